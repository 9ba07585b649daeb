"""Tests for the composite-locator geocoder."""

import threading

import pytest

from address_resolver.core.geocoding.base import detect_address_format
from address_resolver.core.geocoding.composite import (
    CompositeGeocoder,
    collapse_whitespace,
    parse_score,
)
from address_resolver.core.geocoding.errors import (
    CancellationNotSupportedError,
    GeocodeServiceFault,
    GeocoderArgumentError,
    GeocoderConfigurationError,
)
from address_resolver.core.geocoding.models import (
    Address,
    AddressField,
    AddressFormat,
    AddressPart,
    Point,
    SublocatorType,
)
from address_resolver.core.geocoding.service_info import GeocodingServiceInfo
from address_resolver.core.geocoding.transport import RecordSet
from tests.fixtures.geocoding import (
    CANDIDATE_FIELDS,
    FakeGeocodeServiceClient,
    candidate_records,
    candidate_row,
    composite_service_config,
    echo_batch,
)


@pytest.fixture
def geocoder(composite_service_info, fake_client):
    geocoder = CompositeGeocoder(composite_service_info, fake_client)
    yield geocoder
    geocoder.close()


def single_result(loc_name: str, score: int = 95) -> dict:
    return {
        "Shape": Point(x=-117.19, y=34.05),
        "Score": score,
        "Match_addr": "380 New York St, Redlands, CA, 92373",
        "Loc_name": loc_name,
        "Addr_Type": "PointAddress",
    }


class TestAddressFormatDetection:
    """Address format is derived from the configured field mappings."""

    def test_single_full_address_mapping_is_single_field(self):
        fields = [AddressField(title="SingleLine", type=AddressPart.FULL_ADDRESS)]
        assert detect_address_format(fields, False) == AddressFormat.SINGLE_FIELD

    def test_single_structured_mapping_is_multiple_fields(self):
        fields = [AddressField(title="Address", type=AddressPart.ADDRESS_LINE)]
        assert detect_address_format(fields, True) == AddressFormat.MULTIPLE_FIELDS

    def test_single_line_preference_needs_full_address_mapping(self):
        fields = [
            AddressField(title="Address", type=AddressPart.ADDRESS_LINE),
            AddressField(title="City", type=AddressPart.LOCALITY3),
        ]
        assert detect_address_format(fields, True) == AddressFormat.MULTIPLE_FIELDS

    def test_single_line_preference_with_full_address_mapping(self):
        fields = [
            AddressField(title="SingleLine", type=AddressPart.FULL_ADDRESS),
            AddressField(title="Address", type=AddressPart.ADDRESS_LINE),
        ]
        assert detect_address_format(fields, True) == AddressFormat.SINGLE_FIELD
        assert detect_address_format(fields, False) == AddressFormat.MULTIPLE_FIELDS

    def test_multiple_fields_exclude_full_address(self, geocoder):
        types = [f.type for f in geocoder.address_fields]

        assert geocoder.address_format == AddressFormat.MULTIPLE_FIELDS
        assert AddressPart.FULL_ADDRESS not in types
        assert types == [
            AddressPart.ADDRESS_LINE,
            AddressPart.LOCALITY3,
            AddressPart.STATE_PROVINCE,
            AddressPart.POSTAL_CODE1,
        ]

    def test_single_field_exposes_only_full_address(self, fake_client):
        info = GeocodingServiceInfo.model_validate(
            composite_service_config(use_single_line_input=True)
        )
        geocoder = CompositeGeocoder(info, fake_client)

        assert geocoder.address_format == AddressFormat.SINGLE_FIELD
        assert [f.type for f in geocoder.address_fields] == [AddressPart.FULL_ADDRESS]


class TestConstruction:
    def test_missing_service_info_is_configuration_error(self, fake_client):
        with pytest.raises(GeocoderConfigurationError):
            CompositeGeocoder(None, fake_client)

    def test_locators_come_from_configuration(self, geocoder):
        names = [locator.name for locator in geocoder.locators]

        assert geocoder.is_composite_locator is True
        assert names == ["AddressPoints", "Streets", "ZipCodes", "CityState"]
        assert geocoder.find_locator("addresspoints").type == SublocatorType.ADDRESS_POINT
        assert geocoder.find_locator("unknown") is None

    def test_default_locator_is_primary_streets(self, geocoder):
        locator = geocoder.default_locator

        assert locator.primary is True
        assert locator.enabled is True
        assert locator.type == SublocatorType.STREETS

    def test_minimum_match_score_defaults_to_80(self, geocoder):
        assert geocoder.minimum_match_score == 80

    def test_construction_does_no_io(self, geocoder, fake_client):
        assert fake_client.calls == []


class TestInitialization:
    def test_metadata_is_read_once(self, geocoder, fake_client):
        geocoder.geocode(Address(address_line="380 New York St"))
        geocoder.geocode(Address(address_line="380 New York St"))

        assert fake_client.metadata_calls == 1
        assert geocoder.batch_size == 2

    def test_concurrent_first_use_reads_metadata_once(self, geocoder, fake_client):
        barrier = threading.Barrier(8)

        def read_batch_size():
            barrier.wait()
            assert geocoder.batch_size == 2

        threads = [threading.Thread(target=read_batch_size) for _ in range(8)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert fake_client.metadata_calls == 1

    def test_batch_size_key_is_case_insensitive(self, composite_service_info):
        client = FakeGeocodeServiceClient()
        client.locator_properties = {"suggestedbatchsize": "25"}
        geocoder = CompositeGeocoder(composite_service_info, client)

        assert geocoder.batch_size == 25

    def test_batch_size_defaults_when_missing(self, composite_service_info):
        geocoder = CompositeGeocoder(composite_service_info, FakeGeocodeServiceClient())

        assert geocoder.batch_size == 1000

    def test_metadata_fault_propagates(self, geocoder, fake_client, service_fault):
        fake_client.fault = service_fault

        with pytest.raises(GeocodeServiceFault):
            geocoder.geocode(Address(address_line="380 New York St"))


class TestGeocode:
    def test_null_address_raises_before_io(self, geocoder, fake_client):
        with pytest.raises(GeocoderArgumentError):
            geocoder.geocode(None)
        assert fake_client.calls == []

    def test_sends_structured_fields_and_modifiers(self, geocoder, fake_client):
        fake_client.geocode_result = single_result("Streets")
        address = Address(
            address_line="380 New York St",
            locality3="Redlands",
            state_province="CA",
            postal_code1="92373",
            full_address="ignored",
        )

        geocoder.geocode(address)

        sent, properties = fake_client.calls_to("geocode_address")[0]
        assert sent == {
            "Address": "380 New York St",
            "City": "Redlands",
            "State": "CA",
            "Zip": "92373",
        }
        assert properties == {
            "WritePercentAlongField": "TRUE",
            "MatchIfScoresTie": "TRUE",
        }

    def test_primary_locator_candidate_is_returned(self, geocoder, fake_client):
        fake_client.geocode_result = single_result("Streets")

        candidate = geocoder.geocode(Address(address_line="380 New York St"))

        assert candidate is not None
        assert candidate.score == 95
        assert candidate.locator.name == "Streets"
        assert candidate.address.match_method == "Streets"
        assert candidate.geo_location == Point(x=-117.19, y=34.05)
        assert candidate.address_type == "PointAddress"

    def test_match_method_is_replaced_with_locator_title(self, geocoder, fake_client):
        fake_client.geocode_result = single_result("AddressPoints")

        candidate = geocoder.geocode(Address(address_line="380 New York St"))

        assert candidate.address.match_method == "Address points"

    def test_non_primary_locator_candidate_is_dropped(self, geocoder, fake_client):
        fake_client.geocode_result = single_result("ZipCodes")

        assert geocoder.geocode(Address(postal_code1="92373")) is None

    def test_disabled_locator_candidate_is_dropped(self, geocoder, fake_client):
        fake_client.geocode_result = single_result("CityState")

        assert geocoder.geocode(Address(locality3="Redlands")) is None

    def test_unknown_locator_is_kept_as_reported(self, geocoder, fake_client):
        fake_client.geocode_result = single_result("Parcels")

        candidate = geocoder.geocode(Address(address_line="380 New York St"))

        assert candidate is not None
        assert candidate.locator is None
        assert candidate.address.match_method == "Parcels"

    def test_fault_means_no_result(self, geocoder, fake_client, service_fault):
        geocoder.batch_size  # initialize before the transport starts failing
        fake_client.fault = service_fault

        assert geocoder.geocode(Address(address_line="380 New York St")) is None

    def test_empty_response_means_no_result(self, geocoder, fake_client):
        fake_client.geocode_result = None

        assert geocoder.geocode(Address(address_line="380 New York St")) is None

    def test_simple_locator_uses_default_locator(self, fake_client):
        info = GeocodingServiceInfo.model_validate(
            composite_service_config(internal_locators=None)
        )
        geocoder = CompositeGeocoder(info, fake_client)
        fake_client.geocode_result = single_result("Anything")

        candidate = geocoder.geocode(Address(address_line="380 New York St"))

        assert geocoder.is_composite_locator is False
        assert geocoder.locators == ()
        assert candidate.locator == geocoder.default_locator


class TestGeocodeCandidates:
    @pytest.fixture
    def mixed_records(self) -> RecordSet:
        return candidate_records(
            candidate_row("380 New York St", "Streets", 90),
            candidate_row("380 New York Ave", "Streets", 50),
            candidate_row("Redlands, CA", "CityState", 95),
            candidate_row("92373", "ZipCodes", 80),
        )

    def test_filters_disabled_and_low_scores(self, geocoder, fake_client, mixed_records):
        fake_client.candidates_result = mixed_records

        candidates = geocoder.geocode_candidates(Address(address_line="380 New York"))

        assert [c.address.full_address for c in candidates] == [
            "380 New York St",
            "92373",
        ]
        assert [c.locator.name for c in candidates] == ["Streets", "ZipCodes"]

    def test_include_disabled_locators(self, geocoder, fake_client, mixed_records):
        fake_client.candidates_result = mixed_records

        candidates = geocoder.geocode_candidates(
            Address(address_line="380 New York"), include_disabled_locators=True
        )

        assert [c.address.full_address for c in candidates] == [
            "380 New York St",
            "Redlands, CA",
            "92373",
        ]
        disabled = candidates[1]
        assert disabled.locator.enabled is False
        assert disabled.address.match_method == "CityState"

    def test_filtering_is_idempotent(self, geocoder, mixed_records):
        first = geocoder.filter_candidates(mixed_records)
        second = geocoder.filter_candidates(mixed_records)

        assert first == second
        assert all(c.score >= geocoder.minimum_candidate_score for c in first)

    def test_fault_is_none_and_no_match_is_empty(
        self, geocoder, fake_client, service_fault
    ):
        fake_client.candidates_result = RecordSet(fields=list(CANDIDATE_FIELDS))
        assert geocoder.geocode_candidates(Address(address_line="nowhere")) == []

        fake_client.fault = service_fault
        assert geocoder.geocode_candidates(Address(address_line="nowhere")) is None

    def test_null_address_raises(self, geocoder):
        with pytest.raises(GeocoderArgumentError):
            geocoder.geocode_candidates(None)


class TestBatchGeocode:
    def test_results_follow_result_id_order(self, composite_service_info):
        client = FakeGeocodeServiceClient()

        def shuffled(addresses, field_mapping):
            return RecordSet(
                fields=[*CANDIDATE_FIELDS, "ResultID"],
                records=[
                    [*candidate_row("C"), 2],
                    [*candidate_row("A"), 0],
                    [*candidate_row("B"), 1],
                ],
            )

        client.batch_responder = shuffled
        geocoder = CompositeGeocoder(composite_service_info, client)

        candidates = geocoder.batch_geocode(
            [Address(address_line=name) for name in ("A", "B", "C")]
        )

        assert [c.address.full_address for c in candidates] == ["A", "B", "C"]

    @pytest.mark.parametrize(
        "bad_row",
        [
            [None, 0, None, None, None, None],
            [None, 0, None, None, None, "x"],
            [None, 0, None],
        ],
    )
    def test_rows_without_usable_result_id_sort_last(
        self, composite_service_info, bad_row
    ):
        client = FakeGeocodeServiceClient()
        client.batch_responder = lambda addresses, field_mapping: RecordSet(
            fields=[*CANDIDATE_FIELDS, "ResultID"],
            records=[bad_row, [*candidate_row("A"), 0]],
        )
        geocoder = CompositeGeocoder(composite_service_info, client)

        candidates = geocoder.batch_geocode(
            [Address(address_line="A"), Address(address_line="B")]
        )

        assert len(candidates) == 2
        assert candidates[0].address.full_address == "A"

    def test_addresses_are_sent_in_service_sized_chunks(self, geocoder, fake_client):
        addresses = [Address(address_line=f"{n} Main St") for n in range(5)]

        candidates = geocoder.batch_geocode(addresses)

        chunks = fake_client.calls_to("geocode_addresses")
        assert [len(records.records) for records, _, _ in chunks] == [2, 2, 1]
        assert [c.address.full_address for c in candidates] == [
            f"{n} Main St" for n in range(5)
        ]

    def test_request_rows_carry_sequential_ids_and_mapping(self, geocoder, fake_client):
        geocoder.batch_geocode(
            [Address(address_line="380 New York St", locality3="Redlands")]
        )

        records, mapping, properties = fake_client.calls_to("geocode_addresses")[0]
        assert records.fields == [
            "OID",
            "AddressLine",
            "Locality3",
            "StateProvince",
            "PostalCode1",
        ]
        assert records.records == [[0, "380 New York St", "Redlands", "", ""]]
        assert mapping == {
            "Address": "AddressLine",
            "City": "Locality3",
            "State": "StateProvince",
            "Zip": "PostalCode1",
        }
        assert properties["MatchIfScoresTie"] == "TRUE"

    def test_single_field_batch_uses_first_service_field(self, fake_client):
        info = GeocodingServiceInfo.model_validate(
            composite_service_config(use_single_line_input=True)
        )
        geocoder = CompositeGeocoder(info, fake_client)

        geocoder.batch_geocode([Address(full_address="380 New York St, Redlands")])

        records, mapping, _ = fake_client.calls_to("geocode_addresses")[0]
        assert records.fields == ["OID", "SingleLine"]
        assert records.records == [[0, "380 New York St, Redlands"]]
        assert mapping == {"SingleLine": "SingleLine"}

    def test_failed_chunk_contributes_nothing(self, geocoder, fake_client):
        calls = []

        def second_chunk_fails(addresses, field_mapping):
            calls.append(addresses)
            if len(calls) == 2:
                raise GeocodeServiceFault("chunk failed")
            return echo_batch(addresses)

        fake_client.batch_responder = second_chunk_fails
        addresses = [Address(address_line=f"{n} Main St") for n in range(5)]

        candidates = geocoder.batch_geocode(addresses)

        assert len(calls) == 3
        assert [c.address.full_address for c in candidates] == [
            "0 Main St",
            "1 Main St",
            "4 Main St",
        ]

    def test_disabled_locator_rows_keep_their_position(self, geocoder, fake_client):
        def middle_row_disabled(addresses, field_mapping):
            return RecordSet(
                fields=[*CANDIDATE_FIELDS, "ResultID"],
                records=[
                    [*candidate_row("A", "Streets"), 0],
                    [*candidate_row("B", "CityState"), 1],
                ],
            )

        fake_client.batch_responder = middle_row_disabled

        candidates = geocoder.batch_geocode([Address(), Address()])

        assert len(candidates) == 2
        assert candidates[0].address.full_address == "A"
        assert candidates[1] is None

    def test_null_entries_are_sent_as_empty_addresses(self, geocoder, fake_client):
        geocoder.batch_geocode([None])

        records, _, _ = fake_client.calls_to("geocode_addresses")[0]
        assert records.records == [[0, "", "", "", ""]]

    def test_empty_input_makes_no_requests(self, geocoder, fake_client):
        assert geocoder.batch_geocode([]) == []
        assert fake_client.calls_to("geocode_addresses") == []

    def test_null_list_raises(self, geocoder):
        with pytest.raises(GeocoderArgumentError):
            geocoder.batch_geocode(None)


class TestReverseGeocode:
    @pytest.fixture
    def reverse_result(self) -> dict:
        return {
            "Address": "380  New York   St",
            "City": "Redlands",
            "State": "CA",
            "Zip": "92373",
            "Loc_name": "Streets",
            "Shape": Point(x=-117.1957, y=34.0564),
        }

    def test_maps_fields_and_composes_full_address(
        self, geocoder, fake_client, reverse_result
    ):
        fake_client.reverse_result = reverse_result

        address = geocoder.reverse_geocode(Point(x=-117.19, y=34.05))

        assert address.address_line == "380 New York St"
        assert address.locality3 == "Redlands"
        assert address.state_province == "CA"
        assert address.postal_code1 == "92373"
        assert address.full_address == "380 New York St, Redlands, CA, 92373"
        assert address.match_method == "Streets"

    def test_sends_search_tolerance(self, geocoder, fake_client, reverse_result):
        fake_client.reverse_result = reverse_result
        location = Point(x=-117.19, y=34.05)

        geocoder.reverse_geocode(location)

        sent_location, intersection, properties = fake_client.calls_to(
            "reverse_geocode"
        )[0]
        assert sent_location == location
        assert intersection is False
        assert properties == {"ReverseDistance": 500.0, "ReverseDistanceUnits": "Meters"}

    def test_field_names_match_case_insensitively(self, geocoder, fake_client):
        fake_client.reverse_result = {"ADDRESS": "1 Main St", "city": "Springfield"}

        address = geocoder.reverse_geocode(Point(x=1, y=2))

        assert address.address_line == "1 Main St"
        assert address.locality3 == "Springfield"

    def test_empty_result_is_none(self, geocoder, fake_client):
        fake_client.reverse_result = {}

        assert geocoder.reverse_geocode(Point(x=1, y=2)) is None

    def test_fault_is_none(self, geocoder, fake_client, service_fault):
        geocoder.batch_size
        fake_client.fault = service_fault

        assert geocoder.reverse_geocode(Point(x=1, y=2)) is None

    def test_null_location_raises(self, geocoder):
        with pytest.raises(GeocoderArgumentError):
            geocoder.reverse_geocode(None)


class TestReverseGeocodeAsync:
    def test_completion_event_carries_address_location_and_token(
        self, geocoder, fake_client
    ):
        fake_client.reverse_result = {
            "Address": "1 Main St",
            "City": "Springfield",
            "Shape": Point(x=10.5, y=20.5),
        }
        received = []
        done = threading.Event()

        def handler(event):
            received.append(event)
            done.set()

        geocoder.add_reverse_geocode_handler(handler)
        request = geocoder.reverse_geocode_async(Point(x=10, y=20), "order-1")
        event = request.result(timeout=5)

        assert done.wait(timeout=5)
        assert event.token == "order-1"
        assert event.address.address_line == "1 Main St"
        assert event.location == Point(x=10.5, y=20.5)
        assert received == [event]

    def test_location_falls_back_to_requested_point(self, geocoder, fake_client):
        fake_client.reverse_result = {"Address": "1 Main St"}

        event = geocoder.reverse_geocode_async(Point(x=10, y=20), "t").result(timeout=5)

        assert event.location == Point(x=10, y=20)

    def test_no_event_without_address_line(self, geocoder, fake_client):
        fake_client.reverse_result = {"City": "Springfield"}
        handler_calls = []
        geocoder.add_reverse_geocode_handler(handler_calls.append)

        request = geocoder.reverse_geocode_async(Point(x=10, y=20), "t")

        assert request.result(timeout=5) is None
        assert handler_calls == []

    def test_null_token_raises(self, geocoder):
        with pytest.raises(GeocoderArgumentError):
            geocoder.reverse_geocode_async(Point(x=1, y=2), None)

    def test_cancel_is_not_supported(self, geocoder):
        assert geocoder.supports_reverse_geocode_cancel is False

        with pytest.raises(CancellationNotSupportedError):
            geocoder.reverse_geocode_async_cancel("anything")


class TestHelpers:
    @pytest.mark.parametrize(
        "value, expected",
        [("  380   New\tYork St ", "380 New York St"), (None, ""), ("", "")],
    )
    def test_collapse_whitespace(self, value, expected):
        assert collapse_whitespace(value) == expected

    @pytest.mark.parametrize(
        "value, expected", [(95.6, 96), ("80", 80), (None, 0), (120, 100), (-3, 0)]
    )
    def test_parse_score(self, value, expected):
        assert parse_score(value) == expected
