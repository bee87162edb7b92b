from concurrent.futures import ThreadPoolExecutor

from wsops.cli.common.progress import BatchProgress


def test_batch_progress_counts_each_terminal_event_once():
    users = [f"u{i}" for i in range(1, 201)]
    progress = BatchProgress(users)

    def feed(user: str) -> None:
        for message in ("namespace", "workspace", "Starting", "failed", "failed", "created"):
            progress.on_event(user, message)

    with ThreadPoolExecutor(max_workers=16) as pool:
        list(pool.map(feed, users))

    assert progress.failures == 200
    assert progress.overall.tasks[0].completed == 200


def test_batch_progress_ignores_unknown_users_and_tracks_state():
    progress = BatchProgress(["u1", "u2"])

    progress.on_event("intruder", "failed")
    progress.on_event("u1", "Starting")
    progress.on_event("u2", "skipped")

    states = {t.fields["user"].strip(): t.fields["state"] for t in progress.per_user.tasks}
    assert states == {"u1": "Starting", "u2": "skipped"}
    assert progress.failures == 0
    assert progress.overall.tasks[0].completed == 1
