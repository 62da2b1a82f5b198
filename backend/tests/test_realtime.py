import asyncio
import threading

from drawing_contest.main import _close_on_disconnect
from drawing_contest.realtime import DELETE, INSERT, UPDATE, ChangeEvent, ChangeFeed, LiveView


def comment(comment_id: str, content: str = "hi", drawing_id: str = "d1") -> dict:
    return {"id": comment_id, "drawing_id": drawing_id, "content": content}


def test_insert_is_idempotent():
    view = LiveView([comment("c1")])
    event = ChangeEvent("comments", INSERT, new=comment("c2"))
    assert view.apply(event) is True
    assert view.apply(event) is False
    assert view.apply(ChangeEvent("comments", INSERT, new=comment("c1"))) is False
    assert [row["id"] for row in view.rows] == ["c1", "c2"]


def test_update_replaces_by_identity():
    view = LiveView([comment("c1"), comment("c2")])
    view.apply(ChangeEvent("comments", UPDATE, new=comment("c1", "edited"), old=comment("c1")))
    assert view.rows[0]["content"] == "edited"
    assert len(view) == 2
    assert view.apply(ChangeEvent("comments", UPDATE, new=comment("c1", "edited"))) is False


def test_update_for_unknown_row_is_added():
    view = LiveView()
    view.apply(ChangeEvent("comments", UPDATE, new=comment("c9")))
    assert [row["id"] for row in view.rows] == ["c9"]


def test_delete_removes_by_identity():
    view = LiveView([comment("c1"), comment("c2")])
    assert view.apply(ChangeEvent("comments", DELETE, old=comment("c1"))) is True
    assert view.apply(ChangeEvent("comments", DELETE, old=comment("c1"))) is False
    assert [row["id"] for row in view.rows] == ["c2"]


def test_initial_rows_are_deduplicated():
    view = LiveView([comment("c1"), comment("c1", "again")])
    assert len(view) == 1


def test_subscription_receives_matching_events_until_closed():
    feed = ChangeFeed()

    async def run():
        received = []
        subscription = feed.subscribe("comments", drawing_id="d1")
        feed.publish(ChangeEvent("comments", INSERT, new=comment("c1")))
        feed.publish(ChangeEvent("comments", INSERT, new=comment("c2", drawing_id="d2")))
        feed.publish(ChangeEvent("reactions", INSERT, new={"id": "r1", "drawing_id": "d1"}))
        feed.publish(ChangeEvent("comments", DELETE, old=comment("c1")))
        subscription.close()
        async for event in subscription:
            received.append((event.type, event.identity))
        return received

    assert asyncio.run(run()) == [(INSERT, "c1"), (DELETE, "c1")]
    assert feed.subscriber_count == 0


def test_publish_from_worker_thread():
    feed = ChangeFeed()

    async def run():
        with feed.subscribe("comments", drawing_id="d1") as subscription:
            assert feed.subscriber_count == 1
            worker = threading.Thread(
                target=feed.publish, args=(ChangeEvent("comments", INSERT, new=comment("c1")),)
            )
            worker.start()
            event = await asyncio.wait_for(subscription.__anext__(), timeout=5)
            worker.join()
        return event

    event = asyncio.run(run())
    assert event.identity == "c1"
    assert feed.subscriber_count == 0


def test_resubscribe_starts_a_fresh_sequence():
    feed = ChangeFeed()

    async def run():
        first = feed.subscribe("comments", drawing_id="d1")
        feed.publish(ChangeEvent("comments", INSERT, new=comment("c1")))
        first.close()
        second = feed.subscribe("comments", drawing_id="d1")
        feed.publish(ChangeEvent("comments", INSERT, new=comment("c2")))
        second.close()
        return [e.identity async for e in first], [e.identity async for e in second]

    assert asyncio.run(run()) == (["c1"], ["c2"])


def test_socket_watcher_closes_subscription_on_receive_error():
    class BrokenSocket:
        async def receive(self):
            raise RuntimeError('Cannot call "receive" once a disconnect message has been received.')

    feed = ChangeFeed()

    async def run():
        subscription = feed.subscribe("comments", drawing_id="d1")
        await _close_on_disconnect(BrokenSocket(), subscription)
        return [event async for event in subscription]

    assert asyncio.run(run()) == []
    assert feed.subscriber_count == 0
