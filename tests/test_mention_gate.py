from team9link.config.accounts import ResolvedAccount
from team9link.config.schema import AgentConfig, CommandsConfig, Config, GroupConfig
from team9link.pipeline.commands import has_control_command, normalize_command_text
from team9link.pipeline.mentions import (
    MentionGate,
    build_mention_regexes,
    extract_mentioned_user_ids,
    resolve_group_require_mention,
    resolve_mention_patterns,
    strip_html,
)

BOT_ID = "bot-1"


def _evaluate(text: str, *, mentioned=None, require_mention: bool = True, patterns=None, bot_user_id=BOT_ID, bot_username="helper", commands=None):
    gate = MentionGate(commands)
    return gate.evaluate(
        text=text,
        mentioned_user_ids=set(mentioned or ()),
        require_mention=require_mention,
        regexes=build_mention_regexes(patterns or []),
        bot_user_id=bot_user_id,
        bot_username=bot_username,
    )


def test_unmentioned_group_message_is_skipped() -> None:
    decision = _evaluate("just chatting")
    assert decision.was_mentioned is False
    assert decision.should_skip is True


def test_explicit_mention_tag_passes() -> None:
    decision = _evaluate("hey can you help", mentioned={BOT_ID})
    assert decision.was_mentioned is True
    assert decision.should_skip is False


def test_mention_of_someone_else_is_skipped() -> None:
    decision = _evaluate("hey", mentioned={"user-9"})
    assert decision.should_skip is True


def test_username_pattern_counts_as_mention() -> None:
    decision = _evaluate("@helper what time is it", patterns=[r"(?<![\w.-])@helper\b"])
    assert decision.was_mentioned is True
    assert decision.should_skip is False


def test_control_command_bypasses_mention_requirement() -> None:
    decision = _evaluate("/status")
    assert decision.was_mentioned is False
    assert decision.effective_was_mentioned is True
    assert decision.should_skip is False


def test_control_command_addressed_to_someone_else_does_not_bypass() -> None:
    decision = _evaluate("@alice /status")
    assert decision.effective_was_mentioned is False
    assert decision.should_skip is True


def test_text_commands_disabled_means_no_bypass() -> None:
    decision = _evaluate("/status", commands=CommandsConfig(text=False))
    assert decision.should_skip is True


def test_nothing_to_detect_never_skips() -> None:
    decision = _evaluate("hello", bot_user_id=None, bot_username=None)
    assert decision.should_skip is False


def test_mention_not_required_never_skips() -> None:
    assert _evaluate("hello", require_mention=False).should_skip is False


def test_require_mention_lookup_order() -> None:
    account = ResolvedAccount(
        account_id="ops",
        base_url="http://h",
        ws_url="ws://h/im",
        groups={"c-account": GroupConfig(require_mention=False), "*": GroupConfig(require_mention=False)},
        shared_groups={"c-shared": GroupConfig(require_mention=False), "c-account": GroupConfig(require_mention=True)},
    )
    assert resolve_group_require_mention(account, "c-account") is False
    assert resolve_group_require_mention(account, "c-shared") is False
    assert resolve_group_require_mention(account, "other") is False

    bare = ResolvedAccount(account_id="default", base_url="http://h", ws_url="ws://h/im")
    assert resolve_group_require_mention(bare, "anything") is True

    shared_only = ResolvedAccount(
        account_id="default",
        base_url="http://h",
        ws_url="ws://h/im",
        shared_groups={"*": GroupConfig(require_mention=False)},
    )
    assert resolve_group_require_mention(shared_only, "anything") is False


def test_agent_patterns_override_global_patterns() -> None:
    config = Config()
    config.team9.mentions.patterns = ["global"]
    config.agents["team9-group-c1"] = AgentConfig(mention_patterns=["agent-only"])

    assert resolve_mention_patterns(config, "team9-group-c1")[0] == "agent-only"
    assert resolve_mention_patterns(config, "team9-group-c2") == ["global"]
    assert len(resolve_mention_patterns(config, None, "helper")) == 2


def test_invalid_patterns_are_skipped() -> None:
    assert len(build_mention_regexes(["ok", "(unclosed"])) == 1


def test_markup_helpers() -> None:
    raw = '<p>Hi <mention data-user-id="bot-1">@helper</mention> &amp; team</p>'
    assert extract_mentioned_user_ids(raw) == {"bot-1"}
    assert strip_html(raw) == "Hi @helper & team"


def test_command_detection_strips_leading_mentions() -> None:
    assert normalize_command_text("@helper /reset now") == "/reset now"
    assert normalize_command_text("/status@helper") == "/status"
    assert has_control_command("/new")
    assert not has_control_command("/unknown")
    assert not has_control_command("please /reset")
