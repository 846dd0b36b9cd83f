from chat_core.prompts import (
    DEFAULT_PERSONA_PROMPT,
    NO_RESPONSE_SENTINEL,
    PersonaCatalog,
    build_system_prompt,
)


def test_default_persona_always_exists(tmp_path):
    catalog = PersonaCatalog({}, tmp_path / "missing")
    assert catalog.names() == ["default"]
    assert catalog.get("default").prompt == DEFAULT_PERSONA_PROMPT


def test_unknown_persona_falls_back_to_default():
    catalog = PersonaCatalog({"default": "be nice"})
    assert catalog.get("pirate").prompt == "be nice"
    assert catalog.get(None).name == "default"


def test_persona_files_override_config(tmp_path):
    (tmp_path / "猫娘.md").write_text("  你是一个可爱的猫娘  \n", encoding="utf-8")
    (tmp_path / "advisor.md").write_text("from file", encoding="utf-8")
    (tmp_path / "empty.md").write_text("   ", encoding="utf-8")
    (tmp_path / "notes.txt").write_text("ignored", encoding="utf-8")
    catalog = PersonaCatalog({"advisor": "from config", "tutor": "teach"}, tmp_path)

    assert catalog.names() == sorted(["advisor", "default", "tutor", "猫娘"])
    assert catalog.get("advisor").prompt == "from file"
    assert catalog.get("猫娘").prompt == "你是一个可爱的猫娘"
    assert not catalog.has("empty")


def test_refresh_picks_up_new_files(tmp_path):
    catalog = PersonaCatalog({}, tmp_path)
    assert not catalog.has("pirate")
    (tmp_path / "pirate.md").write_text("arr", encoding="utf-8")
    catalog.refresh()
    assert catalog.get("pirate").prompt == "arr"
    catalog.refresh({"default": "new default"})
    assert catalog.get("default").prompt == "new default"


def test_system_prompt_contains_instructions():
    prompt = build_system_prompt("persona text")
    assert prompt.startswith("persona text")
    assert "\\n---\\n" in prompt
    assert NO_RESPONSE_SENTINEL in prompt
