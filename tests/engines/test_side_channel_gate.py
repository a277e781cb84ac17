"""Tests for the side-channel gate."""

from datetime import datetime, timezone
from uuid import uuid4

import pytest

from workflow_engines.side_channel import blocks_completion, open_request, respond
from workflow_kernel.domain.subject import SideChannelStatus
from workflow_kernel.exceptions import (
    AlreadyPendingError,
    NoPendingRequestError,
    NotEligibleError,
)

NOW = datetime(2024, 3, 1, tzinfo=timezone.utc)
SUBJECT = uuid4()


class TestSideChannelGate:

    def test_no_request_does_not_block(self):
        assert not blocks_completion(None)

    def test_pending_request_blocks(self):
        request = open_request(SUBJECT, None, "a1", "x", NOW)
        assert request.status == SideChannelStatus.PENDING
        assert request.requested_by == "a1"
        assert blocks_completion(request)

    def test_second_request_while_pending(self):
        request = open_request(SUBJECT, None, "a1", "x", NOW)
        with pytest.raises(AlreadyPendingError) as exc_info:
            open_request(SUBJECT, request, "a2", "y", NOW)
        assert exc_info.value.recipient_id == "x"

    @pytest.mark.parametrize("approved", [True, False])
    def test_response_unblocks(self, approved):
        request = open_request(SUBJECT, None, "a1", "x", NOW)
        answered = respond(SUBJECT, request, "x", approved, NOW)
        expected = SideChannelStatus.APPROVED if approved else SideChannelStatus.REJECTED
        assert answered.status == expected
        assert answered.responded_at == NOW
        assert not blocks_completion(answered)

    def test_only_recipient_may_respond(self):
        request = open_request(SUBJECT, None, "a1", "x", NOW)
        with pytest.raises(NotEligibleError):
            respond(SUBJECT, request, "a1", True, NOW)

    def test_respond_without_request(self):
        with pytest.raises(NoPendingRequestError):
            respond(SUBJECT, None, "x", True, NOW)

    def test_respond_twice(self):
        request = respond(SUBJECT, open_request(SUBJECT, None, "a1", "x", NOW), "x", True, NOW)
        with pytest.raises(NoPendingRequestError):
            respond(SUBJECT, request, "x", False, NOW)

    def test_new_request_replaces_resolved_one(self):
        resolved = respond(SUBJECT, open_request(SUBJECT, None, "a1", "x", NOW), "x", False, NOW)
        again = open_request(SUBJECT, resolved, "a2", "y", NOW)
        assert again.recipient_id == "y"
        assert again.is_pending
