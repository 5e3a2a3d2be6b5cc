"""
Tests for the errand orchestration flow.
"""
from unittest.mock import MagicMock

import pytest
import requests

from errand_bot.errors import ErrandError, NotFoundCondition, UpstreamServiceError, ValidationError
from errand_bot.llm_client import UNDERSTAND_FAILURE_MESSAGE
from errand_bot.schemas import (
    ErrandAccepted,
    ErrandCompleted,
    ErrandRequest,
    LocationHint,
    ParsedIntent,
    PlaceCandidate,
    TaskStatus,
)
from errand_bot.places_service import PlacesService
from errand_bot.services import build_services
from errand_bot.services.orchestration import needs_interactive_call

from conftest import TEST_BASE_URL, TEST_CALL_SID, RecordingSubscriber


def errand(text="Book a dentist appointment for tomorrow at 3pm", phone="(415) 555-0199", location=None):
    return ErrandRequest(request=text, user_phone_number=phone, location=location)


def statuses(record):
    return [entry.step for entry in record.history]


class TestNeedsInteractiveCall:
    """Tests for the call/no-call decision."""

    def test_booking_actions(self):
        assert needs_interactive_call(ParsedIntent(service="dentist", action="Book"))
        assert needs_interactive_call(ParsedIntent(service="dentist", action="check availability"))
        assert needs_interactive_call(ParsedIntent(service="salon", action="schedule"))

    def test_find_action(self):
        assert not needs_interactive_call(ParsedIntent(service="pharmacy", action="find"))


# =============================================================================
# Happy paths
# =============================================================================

class TestInteractiveErrand:
    """Errands that end with a placed call."""

    @pytest.mark.asyncio
    async def test_places_call_and_walks_every_status(self, services, twilio_client):
        outcome = await services.flow.run(errand())

        assert isinstance(outcome, ErrandAccepted)
        assert outcome.place_name == "Bright Smile Dental"
        assert "(+14155550100)" in outcome.message

        record = services.store.load(outcome.task_id)
        assert record.status == TaskStatus.CALL_INITIATED
        assert record.call_sid == TEST_CALL_SID
        assert statuses(record) == [
            TaskStatus.PROCESSING,
            TaskStatus.PARSING_REQUEST,
            TaskStatus.REQUEST_PARSED,
            TaskStatus.FINDING_PLACES,
            TaskStatus.PLACES_FOUND,
            TaskStatus.PLACE_SELECTED,
            TaskStatus.GENERATING_SCRIPT,
            TaskStatus.INITIATING_CALL,
            TaskStatus.CALL_INITIATED,
        ]

    @pytest.mark.asyncio
    async def test_record_carries_accumulated_details(self, services, fake_llm):
        outcome = await services.flow.run(errand())
        record = services.store.load(outcome.task_id)

        assert record.callback_phone == "+14155550199"
        assert record.details.parsed.service == "dentist appointment"
        assert record.details.selected_place.name == "Bright Smile Dental"
        assert record.details.cleaned_phone_number == "+14155550100"
        assert record.details.call_script == fake_llm.script
        assert record.conversation_log[0].speaker == "assistant"
        assert record.conversation_log[0].text == fake_llm.script

    @pytest.mark.asyncio
    async def test_call_is_placed_with_script_and_callback(self, services, twilio_client, fake_llm):
        outcome = await services.flow.run(errand())

        kwargs = twilio_client.calls.create.call_args.kwargs
        assert kwargs["to"] == "+14155550100"
        assert kwargs["from_"] == "+15005550006"
        assert kwargs["status_callback"] == f"{TEST_BASE_URL}/errands/provider-callback?taskId={outcome.task_id}"
        assert fake_llm.script in kwargs["twiml"]

    @pytest.mark.asyncio
    async def test_skips_places_without_phone(self, services, fake_places):
        fake_places.places.insert(0, PlaceCandidate(name="No Phone Dental", phone=None))

        outcome = await services.flow.run(errand())

        assert outcome.place_name == "Bright Smile Dental"

    @pytest.mark.asyncio
    async def test_script_failure_uses_fallback(self, services, fake_llm):
        fake_llm.script_error = UpstreamServiceError("AI script generation failed: timeout")

        outcome = await services.flow.run(errand())

        record = services.store.load(outcome.task_id)
        assert record.details.call_script == (
            "Hello, this is an automated assistant calling for a user to book dentist appointment "
            "regarding tomorrow at 3pm."
        )
        assert record.status == TaskStatus.CALL_INITIATED

    @pytest.mark.asyncio
    async def test_subscribers_see_each_step(self, services):
        subscriber = RecordingSubscriber()
        # Subscribe as soon as the flow creates the task
        original_apply = services.state_machine.apply_transition

        async def join_then_apply(task_id, update):
            if services.notifier.subscriber_count(task_id) == 0:
                services.notifier.join(task_id, subscriber)
            return await original_apply(task_id, update)

        services.state_machine.apply_transition = join_then_apply
        await services.flow.run(errand())

        pushed = [message["data"]["status"] for message in subscriber.messages]
        assert pushed[0] == "processing"
        assert pushed[-1] == "call_initiated"
        assert len(pushed) == 9


class TestFindOnlyErrand:
    """Errands that need no call."""

    @pytest.mark.asyncio
    async def test_find_completes_without_call(self, services, fake_llm, twilio_client):
        fake_llm.intent = ParsedIntent(service="pharmacy", action="find")

        outcome = await services.flow.run(errand("Find a pharmacy near me"))

        assert isinstance(outcome, ErrandCompleted)
        assert outcome.status == "Completed"
        assert [place.name for place in outcome.places] == ["Bright Smile Dental"]
        record = services.store.load(outcome.task_id)
        assert record.status == TaskStatus.COMPLETED
        assert TaskStatus.GENERATING_SCRIPT not in statuses(record)
        twilio_client.calls.create.assert_not_called()

    @pytest.mark.asyncio
    async def test_other_non_call_action_returns_no_places(self, services, fake_llm):
        fake_llm.intent = ParsedIntent(service="bakery", action="ask about")

        outcome = await services.flow.run(errand("Ask the bakery about gluten free bread"))

        assert isinstance(outcome, ErrandCompleted)
        assert outcome.places == []


class TestSearchLocation:
    """Which location biases place search."""

    @pytest.mark.asyncio
    async def test_request_location_is_used(self, services, fake_places):
        await services.flow.run(errand(location=LocationHint(lat=37.77, lng=-122.42)))

        query, location = fake_places.queries[0]
        assert query == "dentist appointment"
        assert location == {"lat": 37.77, "lng": -122.42}

    @pytest.mark.asyncio
    async def test_default_location_without_hint(self, services, fake_places):
        await services.flow.run(errand())

        _, location = fake_places.queries[0]
        assert location == services.flow.default_location

    @pytest.mark.asyncio
    async def test_location_hint_joins_query(self, services, fake_llm, fake_places):
        fake_llm.intent = ParsedIntent(service="plumber", action="book", location_hint="downtown")

        await services.flow.run(errand("Book a plumber downtown"))

        assert fake_places.queries[0][0] == "plumber downtown"


# =============================================================================
# Failures
# =============================================================================

class TestErrandFailures:
    """Each failure commits one failed transition and re-raises."""

    @pytest.mark.asyncio
    async def test_invalid_callback_phone_creates_no_task(self, services, fake_llm):
        with pytest.raises(ValidationError) as exc_info:
            await services.flow.run(errand(phone="notaphone"))

        assert exc_info.value.task_id is None
        assert len(services.store.memory) == 0
        assert fake_llm.parsed_texts == []

    @pytest.mark.asyncio
    async def test_unparseable_request(self, services, fake_llm):
        fake_llm.intent = ParsedIntent(service="dentist", action=None)

        with pytest.raises(ValidationError) as exc_info:
            await services.flow.run(errand("hmm"))

        record = services.store.load(exc_info.value.task_id)
        assert record.status == TaskStatus.FAILED
        assert record.error == UNDERSTAND_FAILURE_MESSAGE

    @pytest.mark.asyncio
    async def test_no_places_found(self, services, fake_places):
        fake_places.places = []

        with pytest.raises(NotFoundCondition) as exc_info:
            await services.flow.run(errand())

        assert exc_info.value.status_code == 404
        record = services.store.load(exc_info.value.task_id)
        assert record.status == TaskStatus.FAILED
        assert record.error == "Could not find any 'dentist appointment' nearby."

    @pytest.mark.asyncio
    async def test_no_place_with_phone(self, services, fake_places):
        fake_places.places = [PlaceCandidate(name="Quiet Dental", phone="")]

        with pytest.raises(NotFoundCondition) as exc_info:
            await services.flow.run(errand())

        assert "none had a usable phone number" in exc_info.value.message

    @pytest.mark.asyncio
    async def test_unformattable_business_phone_never_dials(self, services, fake_places, twilio_client):
        fake_places.places = [PlaceCandidate(name="Odd Dental", phone="555-0100")]

        with pytest.raises(ValidationError) as exc_info:
            await services.flow.run(errand())

        twilio_client.calls.create.assert_not_called()
        record = services.store.load(exc_info.value.task_id)
        assert record.status == TaskStatus.FAILED
        assert TaskStatus.GENERATING_SCRIPT not in statuses(record)
        assert record.error.startswith("Cannot reliably format phone number")

    @pytest.mark.asyncio
    async def test_place_search_upstream_error(self, services, fake_places):
        fake_places.error = UpstreamServiceError("Google Maps API request timed out.")

        with pytest.raises(UpstreamServiceError) as exc_info:
            await services.flow.run(errand())

        assert exc_info.value.status_code == 502
        assert services.store.load(exc_info.value.task_id).error == "Google Maps API request timed out."

    @pytest.mark.asyncio
    async def test_unexpected_error_is_wrapped(self, services, fake_places):
        fake_places.error = KeyError("results")

        with pytest.raises(ErrandError) as exc_info:
            await services.flow.run(errand())

        assert exc_info.value.status_code == 500
        assert exc_info.value.message.startswith("Unexpected error processing errand:")
        record = services.store.load(exc_info.value.task_id)
        assert record.status == TaskStatus.FAILED
        assert record.error == exc_info.value.message

    @pytest.mark.asyncio
    async def test_call_rejected_by_twilio(self, services, twilio_client):
        from twilio.base.exceptions import TwilioException

        twilio_client.calls.create.side_effect = TwilioException("Unable to create record")

        with pytest.raises(UpstreamServiceError) as exc_info:
            await services.flow.run(errand())

        record = services.store.load(exc_info.value.task_id)
        assert record.status == TaskStatus.FAILED
        assert record.details.cleaned_phone_number == "+14155550100"
        assert record.call_sid is None

    @pytest.mark.asyncio
    async def test_maps_api_key_stays_out_of_task_updates(self, fake_llm, telephony):
        session = MagicMock()
        session.get.side_effect = requests.ConnectionError(
            "HTTPSConnectionPool(host='maps.googleapis.com', port=443): Max retries exceeded with url: "
            "/maps/api/place/textsearch/json?query=dentist+appointment&key=AIzaSECRETKEY123"
        )
        places = PlacesService(api_key="AIzaSECRETKEY123", session=session)
        services = build_services(llm=fake_llm, places=places, telephony=telephony, validate_signatures=False)
        subscriber = RecordingSubscriber()
        original_apply = services.state_machine.apply_transition

        async def join_then_apply(task_id, update):
            if services.notifier.subscriber_count(task_id) == 0:
                services.notifier.join(task_id, subscriber)
            return await original_apply(task_id, update)

        services.state_machine.apply_transition = join_then_apply

        with pytest.raises(UpstreamServiceError) as exc_info:
            await services.flow.run(errand())

        assert exc_info.value.status_code == 502
        assert exc_info.value.message == "Google Maps API request failed (connection error)"
        last = subscriber.messages[-1]["data"]
        assert last["status"] == "failed"
        assert "AIzaSECRETKEY123" not in str(subscriber.messages)
        assert "AIzaSECRETKEY123" not in services.store.load(exc_info.value.task_id).model_dump_json()
