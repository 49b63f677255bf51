"""Tests for collector applications."""

import pytest

from src.core.errors import InvalidRequestError, InvalidTransitionError, NotFoundError, UnauthorizedError
from src.domain.user import UserRole
from src.services.application_service import decide_application, submit_application


@pytest.mark.asyncio
async def test_resident_can_apply_once(people) -> None:
    """Test a second pending application is refused."""
    application = await submit_application(applicant=people["resident"])

    assert application["status"] == "pending"
    with pytest.raises(InvalidRequestError, match="already pending"):
        await submit_application(applicant=people["resident"])


@pytest.mark.asyncio
async def test_collectors_cannot_apply(people) -> None:
    """Test only residents may apply."""
    with pytest.raises(InvalidRequestError):
        await submit_application(applicant=people["collector"])


@pytest.mark.asyncio
async def test_approval_promotes_applicant(people, users) -> None:
    """Test approving changes the applicant's role and yields the decision event."""
    application = await submit_application(applicant=people["resident"])

    event = await decide_application(reviewer=people["admin"], application_id=application["id"], approved=True)

    assert event.approved is True
    assert event.applicant_id == people["resident"].user_id
    assert event.reviewer.id == people["admin"].user_id
    profile = await users.get_user(people["resident"].user_id)
    assert profile.role == UserRole.COLLECTOR


@pytest.mark.asyncio
async def test_rejection_keeps_role_and_reason(people, users) -> None:
    """Test rejecting leaves the role alone."""
    application = await submit_application(applicant=people["resident"])

    event = await decide_application(
        reviewer=people["admin"], application_id=application["id"], approved=False, reason="Missing licence"
    )

    assert event.reason == "Missing licence"
    assert (await users.get_user(people["resident"].user_id)).role == UserRole.RESIDENT


@pytest.mark.asyncio
async def test_decisions_are_final(people) -> None:
    """Test a decided application cannot be reviewed again."""
    application = await submit_application(applicant=people["resident"])
    await decide_application(reviewer=people["admin"], application_id=application["id"], approved=False)

    with pytest.raises(InvalidTransitionError, match="already rejected"):
        await decide_application(reviewer=people["admin"], application_id=application["id"], approved=True)


@pytest.mark.asyncio
async def test_only_admins_review(people) -> None:
    """Test non-admin reviewers are refused before any lookup."""
    with pytest.raises(UnauthorizedError):
        await decide_application(reviewer=people["collector"], application_id="1", approved=True)


@pytest.mark.asyncio
async def test_unknown_application(people) -> None:
    """Test reviewing a missing application."""
    with pytest.raises(NotFoundError):
        await decide_application(reviewer=people["admin"], application_id="31337", approved=True)
