import random
from datetime import datetime, timezone

import pytest

from exceptions import AuthError, NotFoundError, TransientError
from gframe_types import ImageRef
from slideshow import EMPTY_MESSAGE, LOADING_MESSAGE, SlideshowController, format_photo_info

from conftest import FakeGateway, make_refs


@pytest.fixture
def gateway():
    return FakeGateway(make_refs("a", "b", "c"))


@pytest.fixture
def make_controller(gateway, surface, dispatcher, clock, make_config):
    def _make(**config_overrides):
        return SlideshowController(
            make_config(**config_overrides), gateway, surface, dispatcher,
            rng=random.Random(1), clock=clock, initial_attempts=1,
        )
    return _make


def started(controller, dispatcher, clock):
    """Start and let the first photo request go out"""
    controller.start()
    dispatcher.run_pending()
    clock.advance(controller.config.startup_delay)
    controller.poll()
    dispatcher.run_pending()
    return controller


def pending_slot(controller, surface):
    return surface.slots[1 - controller.coordinator.active_slot]


def test_loading_message_until_photos_arrive(make_controller, surface, dispatcher):
    controller = make_controller()
    controller.start()
    assert surface.message == LOADING_MESSAGE

    dispatcher.run_pending()
    assert surface.message is None
    assert controller.next_advance is not None


def test_first_photo_after_startup_delay(make_controller, gateway, surface, dispatcher, clock):
    controller = make_controller()
    controller.start()
    dispatcher.run_pending()

    controller.poll()
    assert gateway.resolve_calls == []

    clock.advance(1.0)
    controller.poll()
    dispatcher.run_pending()

    ref, width, height = gateway.resolve_calls[0]
    assert ref.id == "id-a"
    assert (width, height) == (1280, 800)
    assert surface.slots[1].last_url == "https://img.example/id-a?s=1280"


def test_shown_photo_sets_caption(make_controller, surface, dispatcher, clock):
    controller = started(make_controller(show_photo_info=True), dispatcher, clock)
    surface.slots[1].succeed()

    assert controller.coordinator.active_slot == 1
    assert controller.in_flight is None
    assert surface.overlay.text == "March 5, 2024 • a"


def test_caption_disabled(make_controller, surface, dispatcher, clock):
    started(make_controller(show_photo_info=False), dispatcher, clock)
    surface.slots[1].succeed()
    assert surface.overlay.text is None


def test_advances_on_interval(make_controller, gateway, surface, dispatcher, clock):
    controller = started(make_controller(), dispatcher, clock)
    surface.slots[1].succeed()

    clock.advance(29)
    controller.poll()
    assert len(gateway.resolve_calls) == 1

    clock.advance(1)
    controller.poll()
    dispatcher.run_pending()
    assert gateway.resolve_calls[1][0].id == "id-b"
    assert surface.slots[0].last_url == "https://img.example/id-b?s=1280"


def test_tick_skipped_while_request_in_flight(make_controller, gateway, dispatcher, clock):
    controller = started(make_controller(), dispatcher, clock)
    first = controller.in_flight
    assert first is not None

    clock.advance(10)
    assert controller.advance() is None
    assert controller.in_flight == first
    assert len(gateway.resolve_calls) == 1


def test_stalled_request_is_superseded(make_controller, gateway, surface, dispatcher, clock):
    controller = started(make_controller(), dispatcher, clock)
    first = controller.in_flight

    clock.advance(30)
    controller.poll()
    dispatcher.run_pending()

    assert controller.in_flight.request_id == first.request_id + 1
    slot = surface.slots[1]
    slot.succeed(0)
    assert controller.coordinator.active_slot == 0

    slot.succeed(1)
    assert controller.coordinator.active_slot == 1
    assert controller.in_flight is None


def test_skip_forces_advance(make_controller, gateway, surface, dispatcher, clock):
    controller = started(make_controller(), dispatcher, clock)
    controller.skip()
    dispatcher.run_pending()

    assert len(gateway.resolve_calls) == 2
    surface.slots[1].succeed()
    assert surface.slots[1].last_url.startswith("https://img.example/id-b")
    assert controller.coordinator.active_slot == 1


def test_load_failure_retries_after_backoff(make_controller, gateway, surface, dispatcher, clock):
    controller = started(make_controller(retry_backoff=1.0), dispatcher, clock)
    surface.slots[1].fail(error=OSError("404"))

    assert controller.coordinator.active_slot == 0
    assert controller.in_flight is None
    assert controller.retry_at == clock.now + 1.0

    clock.advance(1.0)
    controller.poll()
    dispatcher.run_pending()
    assert gateway.resolve_calls[-1][0].id == "id-b"
    assert controller.retry_at is None


def test_transient_resolve_error_uses_fallback_url(make_controller, gateway, surface, dispatcher, clock):
    gateway.resolve_error = TransientError("thumbnail lookup failed")
    started(make_controller(), dispatcher, clock)
    assert surface.slots[1].last_url == "https://drive.google.com/uc?export=view&id=id-a"


def test_auth_resolve_error_stops_until_credential_updated(make_controller, gateway, surface, dispatcher, clock):
    gateway.resolve_error = AuthError("expired")
    controller = started(make_controller(), dispatcher, clock)

    assert surface.slots[1].loads == []
    assert controller.auth_blocked
    assert controller.retry_at is None
    assert controller.next_advance is None
    assert surface.message == "Not authenticated with Google Drive"

    gateway.resolve_error = None
    controller.credential_updated()
    dispatcher.run_pending()
    assert not controller.auth_blocked
    assert surface.message is None

    clock.advance(1.0)
    controller.poll()
    dispatcher.run_pending()
    assert len(gateway.resolve_calls) == 2
    assert surface.slots[1].loads


def test_revoked_token_does_not_keep_fetching(make_controller, gateway, surface, dispatcher, clock):
    controller = started(make_controller(), dispatcher, clock)
    surface.slots[1].succeed()
    listings = len(gateway.list_calls)

    gateway.resolve_error = AuthError("token revoked")
    gateway.list_error = AuthError("token revoked")
    controller.skip()
    dispatcher.run_pending()
    calls = len(gateway.resolve_calls)

    for _ in range(11):
        clock.advance(1.0)
        controller.poll()
        dispatcher.run_pending()
    controller.skip()
    clock.advance(3600)
    controller.poll()
    dispatcher.run_pending()

    assert len(gateway.resolve_calls) == calls
    assert len(gateway.list_calls) == listings
    assert controller.coordinator.active_slot == 1
    assert controller.scheduler.state == 'blocked'


def test_refresh_auth_error_stops_advancing(make_controller, gateway, surface, dispatcher, clock):
    controller = started(make_controller(refresh_interval=60.0), dispatcher, clock)
    surface.slots[1].succeed()

    gateway.list_error = AuthError("expired")
    clock.advance(60)
    controller.poll()
    dispatcher.run_pending()
    calls = len(gateway.resolve_calls)

    clock.advance(300)
    controller.poll()
    dispatcher.run_pending()

    assert len(gateway.resolve_calls) == calls
    assert surface.message == "Not authenticated with Google Drive"


def test_refresh_mid_advance_only_affects_next_draw(make_controller, gateway, surface, dispatcher, clock):
    controller = started(make_controller(show_photo_info=True), dispatcher, clock)
    request = controller.in_flight
    assert request.image_ref.id == "id-a"

    gateway.photos = make_refs("x", "y")
    controller.scheduler.refresh_now()
    dispatcher.run_pending()
    assert [r.id for r in controller.store.snapshot()] == ["id-x", "id-y"]
    assert controller.in_flight == request

    surface.slots[1].succeed()
    assert controller.coordinator.active_slot == 1
    assert controller.in_flight is None
    assert surface.overlay.text == "March 5, 2024 • a"

    clock.advance(30)
    controller.poll()
    dispatcher.run_pending()
    assert gateway.resolve_calls[-1][0].id == "id-x"


def test_superseded_load_that_wins_updates_caption(make_controller, gateway, surface, dispatcher, clock):
    controller = started(make_controller(show_photo_info=True), dispatcher, clock)
    controller.skip()
    newer = controller.in_flight
    assert newer.image_ref.id == "id-b"

    # The older load lands before the newer URL is resolved
    surface.slots[1].succeed()
    assert controller.coordinator.active_slot == 1
    assert surface.overlay.text == "March 5, 2024 • a"
    assert controller.in_flight == newer

    dispatcher.run_pending()
    surface.slots[0].succeed()
    assert surface.overlay.text == "March 5, 2024 • b"
    assert controller.in_flight is None


def test_pause_and_resume(make_controller, gateway, surface, dispatcher, clock):
    controller = started(make_controller(), dispatcher, clock)
    surface.slots[1].succeed()
    controller.pause()

    clock.advance(300)
    controller.poll()
    assert len(gateway.resolve_calls) == 1

    controller.resume()
    assert controller.next_advance == clock.now + 30
    clock.advance(30)
    controller.poll()
    assert len(gateway.resolve_calls) == 2


def test_empty_folder_shows_message_and_stops(make_controller, gateway, surface, dispatcher, clock):
    gateway.photos = []
    controller = make_controller()
    controller.start()
    dispatcher.run_pending()

    assert surface.message == EMPTY_MESSAGE
    assert controller.next_advance is None
    clock.advance(100)
    controller.poll()
    assert gateway.resolve_calls == []


def test_photos_appearing_later_restart_playback(make_controller, gateway, surface, dispatcher, clock):
    gateway.photos = []
    controller = make_controller(refresh_interval=60.0)
    controller.start()
    dispatcher.run_pending()

    gateway.photos = make_refs("x")
    clock.advance(60)
    controller.poll()
    dispatcher.run_pending()
    assert surface.message is None

    clock.advance(1.0)
    controller.poll()
    dispatcher.run_pending()
    assert gateway.resolve_calls[0][0].id == "id-x"


@pytest.mark.parametrize("error, text", [
    (AuthError("no token"), "Not authenticated with Google Drive"),
    (NotFoundError("gone"), "Google Drive folder not found"),
    (TransientError("offline"), "Cannot reach Google Drive"),
])
def test_fetch_error_shown_when_nothing_to_display(make_controller, gateway, surface, dispatcher, error, text):
    gateway.list_error = error
    controller = make_controller()
    controller.start()
    dispatcher.run_pending()
    assert surface.message == text
    assert controller.message == text


def test_refresh_error_keeps_slideshow_running(make_controller, gateway, surface, dispatcher, clock):
    controller = started(make_controller(refresh_interval=60.0), dispatcher, clock)
    surface.slots[1].succeed()

    gateway.list_error = TransientError("503")
    clock.advance(60)
    controller.poll()
    dispatcher.run_pending()

    assert surface.message is None
    assert len(controller.store) == 3


def test_format_photo_info_without_date():
    ref = ImageRef(id="1", display_name="holiday.photo.jpeg")
    assert format_photo_info(ref) == "holiday.photo"


def test_format_photo_info_without_name():
    ref = ImageRef(id="1", display_name="",
                   created_at=datetime(2023, 12, 25, tzinfo=timezone.utc))
    assert format_photo_info(ref) == "December 25, 2023"
