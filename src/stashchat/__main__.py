import json
import sys

import structlog

from stashchat.channels.sms import handle_sms_question
from stashchat.chat.config import ChatConfig, load_chat_config
from stashchat.chat.orchestrator import RetrievalOrchestrator
from stashchat.chat.types import ChatRequest
from stashchat.embedding import create_embedding_provider
from stashchat.llm import create_chat_provider
from stashchat.util.db import check_vector_extension, configure_engine
from stashchat.util.logging import configure_logging

_logger = structlog.get_logger()

_USAGE = "Usage: python -m stashchat ask --user USER_ID [--channel web|sms] QUESTION"


def _parse_args(args: list[str]) -> tuple[str, str, str]:
    if not args or args[0] != "ask":
        raise ValueError(_USAGE)

    rest = args[1:]
    options: dict[str, str] = {"--channel": "web"}
    words: list[str] = []
    i = 0
    while i < len(rest):
        if rest[i] in ("--user", "--channel"):
            if i + 1 >= len(rest):
                raise ValueError(f"{rest[i]} requires a value")
            options[rest[i]] = rest[i + 1]
            i += 2
            continue
        words.append(rest[i])
        i += 1

    if "--user" not in options or not words:
        raise ValueError(_USAGE)
    return options["--user"], options["--channel"], " ".join(words)


def build_orchestrator(config: ChatConfig) -> RetrievalOrchestrator:
    engine = configure_engine(config.database_url, config.retrieval.statement_timeout_ms)
    if engine.dialect.name == "postgresql" and not check_vector_extension():
        _logger.warning("vector_extension_missing")

    return RetrievalOrchestrator.from_config(
        config,
        embedding_provider=create_embedding_provider(config.embedding),
        chat_provider=create_chat_provider(config.llm),
    )


def main() -> None:
    try:
        user_id, channel, question = _parse_args(sys.argv[1:])
    except ValueError as exc:
        print(exc)
        sys.exit(1)

    config = load_chat_config()
    configure_logging(
        json_output=config.logging.json_output,
        log_level=config.logging.log_level,
    )
    orchestrator = build_orchestrator(config)

    if channel == "sms":
        print(handle_sms_question(question, user_id, orchestrator))
        return

    result = orchestrator.chat(ChatRequest(message=question, user_id=user_id, channel=channel))
    print(json.dumps(result.to_dict(), indent=2))


if __name__ == "__main__":
    main()
