"""Minimal interactive console for the chat core.

Reads models and personas from config.yaml (see config.example.yaml).
Commands: /clear, /summary, /models, /model <name>, /persona <name>, /quit
"""

from chat_core.api.service import build_service
from chat_core.domain.exceptions import BusinessError

USER_ID = "console"


def main() -> None:
    service = build_service()
    print("Models:", ", ".join(service.list_models()) or "(none)")
    print("Personas:", ", ".join(service.list_personas()))
    try:
        while True:
            try:
                text = input("> ").strip()
            except EOFError:
                break
            if not text:
                continue
            if text == "/quit":
                break
            if text == "/clear":
                service.clear_conversation(USER_ID)
                print("(cleared)")
            elif text == "/summary":
                print(service.get_conversation_summary(USER_ID))
            elif text == "/models":
                for name in service.list_models():
                    print(service.model_details(name))
            elif text.startswith("/model ") or text.startswith("/persona "):
                command, _, value = text.partition(" ")
                try:
                    if command == "/model":
                        service.set_user_model(USER_ID, value.strip())
                    else:
                        service.set_user_persona(USER_ID, value.strip())
                    print("(ok)")
                except BusinessError as e:
                    print(e.message)
            else:
                segments = service.reply(USER_ID, text)
                if not segments:
                    print("(no reply)")
                for segment in segments:
                    print("AI:", segment)
    finally:
        service.shutdown()


if __name__ == "__main__":
    main()
