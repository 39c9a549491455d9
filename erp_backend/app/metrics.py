# erp_backend/app/metrics.py
from prometheus_client import Counter, Histogram

# === Core metrics (definitions ONLY here) ===
approval_requests_started_total = Counter(
    "approval_requests_started_total", "Approval chains started", ["workflow"]
)

approval_decisions_total = Counter(
    "approval_decisions_total", "Approval decisions recorded", ["workflow", "decision"]
)

approval_decision_conflicts_total = Counter(
    "approval_decision_conflicts_total", "Decisions that lost the race for a pending record", ["workflow"]
)

evidence_overrides_total = Counter(
    "evidence_overrides_total", "Final leave approvals granted with missing evidence"
)

notifications_sent_total = Counter(
    "notifications_sent_total", "Notifications delivered", ["channel"]
)

notification_failures_total = Counter(
    "notification_failures_total", "Notification deliveries that failed", ["channel"]
)

decision_latency_seconds = Histogram(
    "decision_latency_seconds", "Time spent applying an approval decision"
)

def init_metrics_zero():
    # create label combos at 0 so Grafana never sees “no data”
    workflows = ["procurement", "leave"]
    decisions = ["approved", "rejected"]
    channels = ["in_app", "email"]

    for w in workflows:
        approval_requests_started_total.labels(workflow=w).inc(0)
        approval_decision_conflicts_total.labels(workflow=w).inc(0)
        for d in decisions:
            approval_decisions_total.labels(workflow=w, decision=d).inc(0)
    for c in channels:
        notifications_sent_total.labels(channel=c).inc(0)
        notification_failures_total.labels(channel=c).inc(0)

    evidence_overrides_total.inc(0)
