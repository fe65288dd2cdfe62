from dictation_pipeline.core.event_channel import EventChannel
from dictation_pipeline.models.model_state import LifecycleEvent, ModelStateEvent


def test_every_subscriber_receives_events():
    channel = EventChannel()
    first, second = channel.subscribe(), channel.subscribe()
    event = ModelStateEvent(LifecycleEvent.LOADED, model_id="small")

    channel.publish(event)

    assert first.get_nowait() is event
    assert second.get_nowait() is event


def test_full_subscriber_does_not_block_publisher():
    channel = EventChannel(maxsize=1)
    q = channel.subscribe()
    channel.publish(ModelStateEvent(LifecycleEvent.LOADING_STARTED))
    channel.publish(ModelStateEvent(LifecycleEvent.LOADED))
    assert q.get_nowait().kind is LifecycleEvent.LOADING_STARTED
    assert q.empty()


def test_unsubscribed_queue_stops_receiving():
    channel = EventChannel()
    q = channel.subscribe()
    channel.unsubscribe(q)
    channel.publish(ModelStateEvent(LifecycleEvent.UNLOADED))
    assert q.empty()
