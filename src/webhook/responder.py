"""Event responder: picks the reply for one inbound event.

Text messages run through an ordered command table of
``(predicate, producer)`` pairs. The table always ends with a catch-all,
so every text message gets exactly one reply. Commands can be added with
``Responder.register`` without touching the dispatch logic.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime

from src.line.models import OutboundMessage, ReplyRequest, sticker, text
from src.webhook.events import (
    Event,
    FollowEvent,
    ImageContent,
    JoinEvent,
    MessageEvent,
    PostbackEvent,
    StickerContent,
    TextContent,
    reply_token_of,
)
from src.webhook.validation import TextValidator

GREETING_REPLY = "你好！有什麼可以幫助你的嗎？"
HELP_REPLY = (
    "可用指令：\n"
    "• hello - 打招呼\n"
    "• help - 顯示說明\n"
    "• time - 顯示目前時間\n"
    "• sticker - 發送貼圖\n"
    "• echo <文字> - 回音"
)
TIME_REPLY_FORMAT = "目前時間：{now:%Y-%m-%d %H:%M:%S} UTC"
ECHO_REPLY_FORMAT = "回音：{payload}"
FALLBACK_REPLY = "我不太理解你的意思，試試輸入 'help' 查看可用指令。"
INVALID_INPUT_REPLY = "抱歉，您的訊息包含無效內容。"

FOLLOW_REPLY = "歡迎使用 LINE Bot！"
JOIN_REPLY = "大家好！我是你們的 LINE Bot 助手！"
STICKER_ACK = "收到貼圖！"
IMAGE_ACK = "收到圖片！"
OTHER_MESSAGE_ACK = "收到訊息！"
POSTBACK_ACK_FORMAT = "收到 postback: {data}"

GREETING_ALIASES = frozenset({"hello", "hi", "你好", "哈囉"})
HELP_ALIASES = frozenset({"help", "幫助", "說明"})
TIME_ALIASES = frozenset({"time", "時間"})
STICKER_ALIASES = frozenset({"sticker", "貼圖"})
ECHO_PREFIXES = ("echo ", "回音 ")

REPLY_STICKER = ("1", "1")

Clock = Callable[[], datetime]


@dataclass(frozen=True)
class TextCommand:
    name: str
    matches: Callable[[str], bool]
    produce: Callable[[str], tuple[OutboundMessage, ...]]


def _utc_now() -> datetime:
    return datetime.now(UTC)


def _aliases(words: frozenset[str]) -> Callable[[str], bool]:
    return lambda value: value.strip().lower() in words


def strip_echo_prefix(value: str) -> str | None:
    """Return the text after an ``echo `` prefix, or None if there is none."""
    for prefix in ECHO_PREFIXES:
        if value[: len(prefix)].lower() == prefix:
            return value[len(prefix):]
    return None


class Responder:
    """Maps one event to at most one ``ReplyRequest``.

    Holds no per-event state; for a fixed clock the same event always
    yields the same request.
    """

    def __init__(
        self,
        clock: Clock | None = None,
        validator: TextValidator | None = None,
    ) -> None:
        self._clock = clock or _utc_now
        self._validator = validator or TextValidator()
        self._commands: list[TextCommand] = [
            TextCommand(
                "invalid_input",
                lambda value: not self._validator.is_valid(value),
                lambda _: (text(INVALID_INPUT_REPLY),),
            ),
            TextCommand(
                "greeting", _aliases(GREETING_ALIASES), lambda _: (text(GREETING_REPLY),),
            ),
            TextCommand("help", _aliases(HELP_ALIASES), lambda _: (text(HELP_REPLY),)),
            TextCommand(
                "time",
                _aliases(TIME_ALIASES),
                lambda _: (text(TIME_REPLY_FORMAT.format(now=self._clock())),),
            ),
            TextCommand(
                "sticker", _aliases(STICKER_ALIASES), lambda _: (sticker(*REPLY_STICKER),),
            ),
            TextCommand(
                "echo",
                lambda value: strip_echo_prefix(value) is not None,
                lambda value: (
                    text(ECHO_REPLY_FORMAT.format(payload=strip_echo_prefix(value))),
                ),
            ),
        ]
        self._fallback = TextCommand(
            "fallback", lambda _: True, lambda _: (text(FALLBACK_REPLY),),
        )

    @property
    def commands(self) -> tuple[TextCommand, ...]:
        return (*self._commands, self._fallback)

    def register(self, command: TextCommand, before: str | None = None) -> None:
        """Add a command ahead of ``before`` (by name), or just ahead of the fallback."""
        if before is None:
            self._commands.append(command)
            return
        for index, existing in enumerate(self._commands):
            if existing.name == before:
                self._commands.insert(index, command)
                return
        raise KeyError(f"No command named {before!r}")

    def match(self, value: str) -> TextCommand:
        for command in self.commands:
            if command.matches(value):
                return command
        return self._fallback

    def reply_to_text(self, value: str) -> tuple[OutboundMessage, ...]:
        return self.match(value).produce(value)

    def messages_for(self, event: Event) -> tuple[OutboundMessage, ...]:
        if isinstance(event, MessageEvent):
            content = event.message
            if isinstance(content, TextContent):
                return self.reply_to_text(content.text)
            if isinstance(content, StickerContent):
                return (text(STICKER_ACK),)
            if isinstance(content, ImageContent):
                return (text(IMAGE_ACK),)
            return (text(OTHER_MESSAGE_ACK),)
        if isinstance(event, FollowEvent):
            return (text(FOLLOW_REPLY),)
        if isinstance(event, JoinEvent):
            return (text(JOIN_REPLY),)
        if isinstance(event, PostbackEvent):
            return (text(POSTBACK_ACK_FORMAT.format(data=event.postback.data)),)
        return ()

    def respond(self, event: Event) -> ReplyRequest | None:
        token = reply_token_of(event)
        if not token:
            return None
        messages = self.messages_for(event)
        if not messages:
            return None
        return ReplyRequest(reply_token=token, messages=messages)


_default_responder = Responder()


def respond(event: Event) -> ReplyRequest | None:
    return _default_responder.respond(event)
