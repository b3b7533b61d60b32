from poolsync import db


def test_log_event_and_latest_events():
    db.log_event("info", "Polling started", instance="web", pool="/Common/web_pool")
    db.log_event("WARN", "Failed to retrieve endpoint list", instance="api", pool="/Common/api_pool")

    latest = db.latest_events(10)
    assert [e["message"] for e in latest] == ["Failed to retrieve endpoint list", "Polling started"]
    assert latest[1]["level"] == "INFO"

    only_web = db.latest_events(10, instance="web")
    assert len(only_web) == 1
    assert only_web[0]["pool"] == "/Common/web_pool"
