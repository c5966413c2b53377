from conftest import make_account
from webhook_bridge.core.status import (
    MASK,
    ChannelStatus,
    build_account_snapshot,
    collect_status_issues,
    collect_warnings,
)
from webhook_bridge.messenger.models import ProbeResult


def test_fully_configured_account_has_no_issues():
    account = make_account()
    assert account.configured
    assert collect_status_issues(account) == []


def test_missing_credentials_are_reported_with_fixes():
    account = make_account(outbound={"url": None, "token": None})
    issues = collect_status_issues(account)
    assert [issue.message for issue in issues] == [
        "HTTP webhook outbound.url is missing.",
        "HTTP webhook outbound.token is missing.",
    ]
    assert issues[0].fix == "Set webhook.outbound.url."
    assert not account.configured


def test_disabled_account_reports_nothing():
    account = make_account(outbound={"url": None}, enabled=False)
    assert collect_status_issues(account) == []


def test_open_policy_warns():
    warnings = collect_warnings(make_account("open", ["*"]))
    assert any("open to anyone" in w for w in warnings)
    assert collect_warnings(make_account()) == []


def test_snapshot_masks_secrets():
    status = ChannelStatus()
    status.mark_started()
    status.mark_inbound()
    snapshot = build_account_snapshot(make_account(), status, ProbeResult(ok=True))

    assert snapshot["inboundToken"] == MASK
    assert snapshot["outboundToken"] == MASK
    assert snapshot["running"] is True
    assert snapshot["lastInboundAt"] is not None
    assert snapshot["dmPolicy"] == "allowlist"
    assert snapshot["probe"] == {"ok": True, "error": None}


def test_status_transitions():
    status = ChannelStatus(last_error="old")
    status.mark_started()
    assert status.running and status.last_error is None
    status.mark_stopped()
    assert not status.running
    assert status.last_stop_at >= status.last_start_at
