"""
Tests for the payment request workflow.
"""

from datetime import date, datetime, timedelta

import pytest

from conftest import NOW
from marketminds.core.events import EventKind
from marketminds.core.exceptions import (
    ActiveSubscriptionExistsError,
    AlreadyProcessedError,
    AlreadyPurchasedError,
    DuplicateRequestError,
    InvalidStateError,
    InvalidSubmissionError,
    NotFoundError,
)
from marketminds.models import (
    AccessType,
    PaymentRequest,
    PaymentStatus,
    PlanSnapshot,
    ReportPayload,
    Subscription,
    SubscriptionPayload,
)
from marketminds.services.report_service import ReportService
from marketminds.services.payment_workflow import PaymentWorkflowService, ReviewDecision

MONTHLY = PlanSnapshot(
    plan_id="monthly", plan_name="Monthly Plan", duration_months=1,
    reports_included=5, premium_reports=3, bluechip_reports=2,
)


@pytest.fixture
def workflow(db, notifier):
    return PaymentWorkflowService(db, notifier)


class TestSubmit:
    def test_creates_pending_request(self, workflow, make_user, make_report):
        user = make_user()
        report = make_report()
        request = workflow.submit(user.id, ReportPayload(report.id), 500, "screenshot-data", NOW)

        assert request.status == PaymentStatus.PENDING.value
        assert request.payment_type == "report"
        assert request.report_id == report.id
        assert request.is_admin_grant is False
        assert user.purchased_reports == []

    def test_duplicate_report_request(self, workflow, make_user, make_report):
        user = make_user()
        report = make_report()
        workflow.submit(user.id, ReportPayload(report.id), 500, "proof", NOW)
        with pytest.raises(DuplicateRequestError):
            workflow.submit(user.id, ReportPayload(report.id), 500, "proof", NOW)

    def test_unique_index_catches_concurrent_duplicate(self, monkeypatch, workflow, make_user, make_report):
        # Both submissions pass the guard, as when they race
        monkeypatch.setattr(PaymentWorkflowService, "_guard", lambda self, user, payload, now: None)
        user = make_user()
        report = make_report()
        workflow.submit(user.id, ReportPayload(report.id), 500, "proof", NOW)

        with pytest.raises(DuplicateRequestError):
            workflow.submit(user.id, ReportPayload(report.id), 500, "proof", NOW)
        assert len(workflow.list_for_user(user.id)) == 1

    def test_same_report_different_users(self, workflow, make_user, make_report):
        report = make_report()
        workflow.submit(make_user().id, ReportPayload(report.id), 500, "proof", NOW)
        workflow.submit(make_user().id, ReportPayload(report.id), 500, "proof", NOW)

    def test_duplicate_subscription_request(self, workflow, make_user):
        user = make_user()
        workflow.submit(user.id, SubscriptionPayload(MONTHLY), 999, "proof", NOW)
        with pytest.raises(DuplicateRequestError):
            workflow.submit(user.id, SubscriptionPayload(MONTHLY), 999, "proof", NOW)

    def test_already_purchased(self, db, workflow, notifier, make_user, make_report, make_subscription):
        from marketminds.services.access_service import AccessService

        user = make_user()
        make_subscription(user)
        report = make_report()
        AccessService(db, notifier).consume_quota(user.id, report.id, NOW)
        with pytest.raises(AlreadyPurchasedError):
            workflow.submit(user.id, ReportPayload(report.id), 500, "proof", NOW)

    def test_active_subscription_exists(self, workflow, make_user, make_subscription):
        user = make_user()
        make_subscription(user)
        with pytest.raises(ActiveSubscriptionExistsError):
            workflow.submit(user.id, SubscriptionPayload(MONTHLY), 999, "proof", NOW)

    def test_expired_subscription_may_renew(self, workflow, make_user, make_subscription):
        user = make_user()
        make_subscription(user, expiry_date=NOW - timedelta(days=1))
        request = workflow.submit(user.id, SubscriptionPayload(MONTHLY), 999, "proof", NOW)
        assert request.is_pending

    @pytest.mark.parametrize("amount, proof", [(500, ""), (500, "   "), (0, "proof"), (-10, "proof"), (None, "proof")])
    def test_invalid_submission(self, workflow, make_user, make_report, amount, proof):
        user = make_user()
        report = make_report()
        with pytest.raises(InvalidSubmissionError):
            workflow.submit(user.id, ReportPayload(report.id), amount, proof, NOW)

    def test_unknown_payload(self, workflow, make_user):
        with pytest.raises(InvalidSubmissionError):
            workflow.submit(make_user().id, {"report_id": 1}, 500, "proof", NOW)

    def test_invalid_plan(self, workflow, make_user):
        plan = PlanSnapshot("p", "Plan", 0, 1, 1, 0)
        with pytest.raises(InvalidSubmissionError):
            workflow.submit(make_user().id, SubscriptionPayload(plan), 100, "proof", NOW)

    def test_missing_report(self, workflow, make_user):
        with pytest.raises(NotFoundError):
            workflow.submit(make_user().id, ReportPayload(12345), 500, "proof", NOW)

    def test_missing_user(self, workflow, make_report):
        report = make_report()
        with pytest.raises(NotFoundError):
            workflow.submit(12345, ReportPayload(report.id), 500, "proof", NOW)

    def test_grant_by_admin_stays_pending(self, workflow, make_user, make_report):
        admin = make_user(is_admin=True)
        user = make_user()
        report = make_report()
        request = workflow.grant_by_admin(admin.id, user.id, ReportPayload(report.id), 500, "bank-transfer-ref", NOW)
        assert request.is_pending
        assert request.is_admin_grant is True
        assert not user.owns_report(report.id)

    def test_grant_by_admin_guards(self, workflow, make_user, make_report):
        admin = make_user(is_admin=True)
        user = make_user()
        report = make_report()
        workflow.submit(user.id, ReportPayload(report.id), 500, "proof", NOW)
        with pytest.raises(DuplicateRequestError):
            workflow.grant_by_admin(admin.id, user.id, ReportPayload(report.id), 500, "ref", NOW)


class TestReview:
    def test_approve_report_purchase(self, workflow, notifier, make_user, make_report):
        admin = make_user(is_admin=True)
        user = make_user()
        report = make_report(title="Auto Sector 2024")
        request = workflow.submit(user.id, ReportPayload(report.id), 500, "proof", NOW)

        reviewed = workflow.review(request.id, ReviewDecision.APPROVED, "Verified", admin.id, NOW)

        assert reviewed.status == PaymentStatus.APPROVED.value
        assert reviewed.reviewed_by == admin.id
        assert reviewed.reviewed_at == NOW
        assert reviewed.grant_applied is True

        purchase = user.find_purchase(report.id)
        assert purchase.access_type == AccessType.INDIVIDUAL.value
        assert purchase.price == 500
        assert user.points == 10

        kind, payload = notifier.emit.call_args[0]
        assert kind == EventKind.PURCHASE_APPROVED
        assert payload["item_name"] == "Auto Sector 2024"
        assert payload["admin_comment"] == "Verified"

    def test_approve_subscription(self, db, workflow, notifier, make_user):
        user = make_user()
        submitted_at = datetime(2024, 1, 15, 9, 30)
        request = workflow.submit(user.id, SubscriptionPayload(MONTHLY), 999, "proof", submitted_at)

        workflow.review(request.id, "approved", None, None, submitted_at)

        current = user.current_subscription
        assert current.expiry_date.date() == date(2024, 2, 15)
        assert current.is_active is True
        assert (current.premium_used, current.bluechip_used, current.reports_used) == (0, 0, 0)
        assert (current.premium_quota, current.bluechip_quota, current.reports_included) == (3, 2, 5)
        assert current.source_request_id == request.id
        assert user.points == 20

        kind, payload = notifier.emit.call_args[0]
        assert kind == EventKind.PURCHASE_APPROVED
        assert payload["subscription"]["expiry_date"] == current.expiry_date

    def test_approve_subscription_archives_expired_one(self, workflow, make_user, make_subscription):
        user = make_user()
        old = make_subscription(user, expiry_date=NOW - timedelta(days=2))
        request = workflow.submit(user.id, SubscriptionPayload(MONTHLY), 999, "proof", NOW)
        workflow.review(request.id, ReviewDecision.APPROVED, None, None, NOW)

        assert user.subscription_history == [old]
        assert user.current_subscription.plan_id == "monthly"

    def test_reject(self, workflow, notifier, make_user, make_report):
        user = make_user()
        report = make_report()
        request = workflow.submit(user.id, ReportPayload(report.id), 500, "proof", NOW)

        reviewed = workflow.review(request.id, ReviewDecision.REJECTED, "Screenshot unreadable", None, NOW)

        assert reviewed.status == PaymentStatus.REJECTED.value
        assert reviewed.grant_applied is False
        assert not user.owns_report(report.id)
        assert user.points == 0
        kind, payload = notifier.emit.call_args[0]
        assert kind == EventKind.PURCHASE_REJECTED
        assert payload["admin_comment"] == "Screenshot unreadable"

    def test_rejected_user_may_resubmit(self, workflow, make_user, make_report):
        user = make_user()
        report = make_report()
        request = workflow.submit(user.id, ReportPayload(report.id), 500, "proof", NOW)
        workflow.review(request.id, ReviewDecision.REJECTED, None, None, NOW)
        assert workflow.submit(user.id, ReportPayload(report.id), 500, "better proof", NOW).is_pending

    @pytest.mark.parametrize("first", [ReviewDecision.APPROVED, ReviewDecision.REJECTED])
    @pytest.mark.parametrize("second", [ReviewDecision.APPROVED, ReviewDecision.REJECTED])
    def test_review_is_terminal(self, workflow, notifier, make_user, make_report, first, second):
        user = make_user()
        report = make_report()
        request = workflow.submit(user.id, ReportPayload(report.id), 500, "proof", NOW)
        workflow.review(request.id, first, "first", None, NOW)
        notifier.emit.reset_mock()

        with pytest.raises(AlreadyProcessedError):
            workflow.review(request.id, second, "second", None, NOW + timedelta(hours=1))

        after = workflow.get(request.id)
        assert after.status == first.value
        assert after.admin_comment == "first"
        assert after.reviewed_at == NOW
        assert len(user.purchased_reports) == (1 if first == ReviewDecision.APPROVED else 0)
        notifier.emit.assert_not_called()

    def test_approving_after_report_deleted(self, foreign_keys, db, workflow, make_user, make_report):
        user = make_user()
        report = make_report()
        request = workflow.submit(user.id, ReportPayload(report.id), 500, "proof", NOW)
        ReportService(db).delete(report.id)

        with pytest.raises(NotFoundError):
            workflow.review(request.id, ReviewDecision.APPROVED, None, None, NOW)

        assert workflow.get(request.id).is_pending
        assert user.purchased_reports == []
        assert user.points == 0

        rejected = workflow.review(request.id, ReviewDecision.REJECTED, "Report withdrawn", None, NOW)
        assert rejected.status == PaymentStatus.REJECTED.value
        assert rejected.report_id is None

    def test_missing_request(self, workflow):
        with pytest.raises(NotFoundError):
            workflow.review(999, ReviewDecision.APPROVED, None, None, NOW)

    def test_unknown_decision(self, workflow, make_user, make_report):
        request = workflow.submit(make_user().id, ReportPayload(make_report().id), 500, "proof", NOW)
        with pytest.raises(InvalidSubmissionError):
            workflow.review(request.id, "maybe", None, None, NOW)

    def test_notification_failure_does_not_undo_approval(self, workflow, notifier, make_user, make_report):
        notifier.emit.return_value = False
        user = make_user()
        report = make_report()
        request = workflow.submit(user.id, ReportPayload(report.id), 500, "proof", NOW)
        assert workflow.review(request.id, ReviewDecision.APPROVED, None, None, NOW).status == "approved"
        assert user.owns_report(report.id)


class TestReconcile:
    def _approve_without_grant(self, db, request):
        # Status landed, grant did not
        request.status = PaymentStatus.APPROVED.value
        request.grant_applied = False
        db.commit()

    def test_reapplies_missing_report_grant(self, db, workflow, make_user, make_report):
        user = make_user()
        report = make_report()
        request = workflow.submit(user.id, ReportPayload(report.id), 500, "proof", NOW)
        self._approve_without_grant(db, request)

        assert workflow.reconcile_ungranted(NOW) == 1
        assert user.owns_report(report.id)
        assert user.points == 10
        assert workflow.get(request.id).grant_applied is True

        assert workflow.reconcile_ungranted(NOW) == 0
        assert len(user.purchased_reports) == 1
        assert user.points == 10

    def test_subscription_already_activated_is_not_duplicated(self, db, workflow, make_user):
        user = make_user()
        request = workflow.submit(user.id, SubscriptionPayload(MONTHLY), 999, "proof", NOW)
        workflow.review(request.id, ReviewDecision.APPROVED, None, None, NOW)
        # Lose only the marker
        stored = workflow.get(request.id)
        stored.grant_applied = False
        db.commit()

        assert workflow.reconcile_ungranted(NOW) == 0
        assert db.query(Subscription).filter(Subscription.user_id == user.id).count() == 1
        assert workflow.get(request.id).grant_applied is True
        assert user.points == 20

    def test_pending_and_rejected_are_ignored(self, workflow, make_user, make_report):
        user = make_user()
        pending = workflow.submit(user.id, ReportPayload(make_report().id), 500, "proof", NOW)
        rejected = workflow.submit(user.id, ReportPayload(make_report(title="Other").id), 500, "proof", NOW)
        workflow.review(rejected.id, ReviewDecision.REJECTED, None, None, NOW)

        assert workflow.reconcile_ungranted(NOW) == 0
        assert workflow.get(pending.id).is_pending
        assert user.purchased_reports == []


class TestQueriesAndNotify:
    def test_resend_for_pending_is_invalid(self, workflow, make_user, make_report):
        request = workflow.submit(make_user().id, ReportPayload(make_report().id), 500, "proof", NOW)
        with pytest.raises(InvalidStateError):
            workflow.resend_decision_notification(request.id)

    def test_resend_after_decision(self, workflow, notifier, make_user, make_report):
        request = workflow.submit(make_user().id, ReportPayload(make_report().id), 500, "proof", NOW)
        workflow.review(request.id, ReviewDecision.REJECTED, "No match", None, NOW)
        notifier.emit.reset_mock()

        assert workflow.resend_decision_notification(request.id) is True
        assert notifier.emit.call_args[0][0] == EventKind.PURCHASE_REJECTED

    def test_list_by_status(self, workflow, make_user, make_report):
        user = make_user()
        first = workflow.submit(user.id, ReportPayload(make_report().id), 500, "proof", NOW)
        workflow.submit(user.id, ReportPayload(make_report(title="Second").id), 500, "proof", NOW)
        workflow.review(first.id, ReviewDecision.APPROVED, None, None, NOW)

        assert [r.id for r in workflow.list_all("approved")] == [first.id]
        assert len(workflow.list_all("pending")) == 1
        assert len(workflow.list_all()) == 2
        assert len(workflow.list_for_user(user.id)) == 2
