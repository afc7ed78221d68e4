"""
Tests for the moderation gate: user blocks and pre-send checks.
"""

import pytest
from django.core.cache import cache

from chat.constants import MESSAGE_CONFIG
from chat.exceptions import AlreadyBlocked, Blocked, ChatValidationError, SendRateLimited
from chat.models import UserBlock
from chat.moderation import ModerationService
from chat.tests.factories import MessageFactory


class TestBlocks:
    def test_block_is_directed(self, guest, host):
        """
        Given host blocks guest
        Then guest is blocked from messaging host, but not the reverse
        """
        ModerationService.block(host, guest, reason="rude")

        assert ModerationService.is_blocked(sender_id=guest.id, recipient_id=host.id)
        assert not ModerationService.is_blocked(sender_id=host.id, recipient_id=guest.id)

    def test_block_records_reason(self, guest, host):
        user_block = ModerationService.block(host, guest, reason="rude")

        assert user_block.is_active is True
        assert user_block.reason == "rude"
        assert user_block.unblocked_at is None

    def test_cannot_block_self(self, guest):
        with pytest.raises(ChatValidationError) as exc_info:
            ModerationService.block(guest, guest)

        assert exc_info.value.error_code == "CANNOT_BLOCK_SELF"

    def test_duplicate_block(self, guest, host):
        ModerationService.block(host, guest)

        with pytest.raises(AlreadyBlocked) as exc_info:
            ModerationService.block(host, guest)

        assert exc_info.value.status_code == 409
        assert UserBlock.objects.filter(blocker=host).count() == 1

    def test_unblock_keeps_history(self, guest, host):
        ModerationService.block(host, guest)

        assert ModerationService.unblock(host, guest) is True

        user_block = UserBlock.objects.get(blocker=host, blocked_user=guest)
        assert user_block.is_active is False
        assert user_block.unblocked_at is not None
        assert not ModerationService.is_blocked(sender_id=guest.id, recipient_id=host.id)

    def test_unblock_without_block(self, guest, host):
        assert ModerationService.unblock(host, guest) is False

    def test_reblock_after_unblock(self, guest, host):
        ModerationService.block(host, guest)
        ModerationService.unblock(host, guest)

        ModerationService.block(host, guest)

        assert UserBlock.objects.filter(blocker=host, blocked_user=guest).count() == 2
        assert ModerationService.is_blocked(sender_id=guest.id, recipient_id=host.id)

    def test_list_blocks_only_active_own(self, guest, host, admin, outsider):
        ModerationService.block(host, guest)
        ModerationService.block(host, admin)
        ModerationService.unblock(host, admin)
        ModerationService.block(outsider, guest)

        blocks = list(ModerationService.list_blocks(host))

        assert [b.blocked_user_id for b in blocks] == [guest.id]


class TestEnsureCanSend:
    def test_unblocked_sender_passes(self, conversation, guest):
        ModerationService.ensure_can_send(guest, conversation)

    def test_blocked_sender(self, conversation, guest, host):
        ModerationService.block(host, guest)

        with pytest.raises(Blocked) as exc_info:
            ModerationService.ensure_can_send(guest, conversation)

        assert exc_info.value.message == "This message could not be sent."
        assert exc_info.value.details == {}

    def test_own_block_does_not_gate_sender(self, conversation, guest, host):
        ModerationService.block(guest, host)

        ModerationService.ensure_can_send(guest, conversation)


class TestRateLimit:
    def test_budget_per_minute(self, guest, settings):
        settings.CHAT_RATE_LIMIT_PER_MINUTE = 3

        for _ in range(3):
            ModerationService.check_rate_limit(guest)
        with pytest.raises(SendRateLimited) as exc_info:
            ModerationService.check_rate_limit(guest)

        assert exc_info.value.error_code == "MESSAGE_RATE_LIMIT"
        assert exc_info.value.details == {"retry_after": 60, "limit": 3}

    def test_budget_is_per_sender(self, guest, host, settings):
        settings.CHAT_RATE_LIMIT_PER_MINUTE = 1
        ModerationService.check_rate_limit(guest)

        ModerationService.check_rate_limit(host)

    def test_window_reset(self, guest, settings):
        settings.CHAT_RATE_LIMIT_PER_MINUTE = 1
        ModerationService.check_rate_limit(guest)
        cache.delete(f"chat:rate:{guest.id}")

        ModerationService.check_rate_limit(guest)

    def test_zero_disables_limit(self, guest, settings):
        settings.CHAT_RATE_LIMIT_PER_MINUTE = 0

        for _ in range(50):
            ModerationService.check_rate_limit(guest)


class TestSpamCheck:
    def test_third_identical_message_rejected(self, conversation, guest):
        MessageFactory(conversation=conversation, sender=guest, content="BUY NOW")
        MessageFactory(conversation=conversation, sender=guest, content="BUY NOW")

        with pytest.raises(ChatValidationError) as exc_info:
            ModerationService.check_spam(guest, conversation, "BUY NOW")

        assert exc_info.value.error_code == "DUPLICATE_CONTENT"

    def test_interleaved_reply_breaks_the_run(self, conversation, guest, host):
        MessageFactory(conversation=conversation, sender=guest, content="hello?")
        MessageFactory(conversation=conversation, sender=host, content="hello?")

        ModerationService.check_spam(guest, conversation, "hello?")

    def test_fewer_messages_than_threshold(self, conversation, guest):
        for _ in range(MESSAGE_CONFIG.SPAM_REPEAT_THRESHOLD - 2):
            MessageFactory(conversation=conversation, sender=guest, content="ok")

        ModerationService.check_spam(guest, conversation, "ok")

    def test_attachment_only_messages_are_not_checked(self, conversation, guest):
        MessageFactory(conversation=conversation, sender=guest, content="")
        MessageFactory(conversation=conversation, sender=guest, content="")

        ModerationService.check_spam(guest, conversation, "")


class TestScanContent:
    @pytest.mark.parametrize(
        "content",
        [
            "My card is 4111 1111 1111 1111",
            "SSN 123-45-6789",
            "Please pay by Wire Transfer",
            "Click here for a discount",
        ],
    )
    def test_suspicious(self, content):
        assert ModerationService.scan_content(content) == MESSAGE_CONFIG.AUTO_FLAG_REASON

    @pytest.mark.parametrize(
        "content",
        ["Is the apartment available in May?", "Check-in is at 15:00", ""],
    )
    def test_clean(self, content):
        assert ModerationService.scan_content(content) == ""
