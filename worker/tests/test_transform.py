import pytest

from bizdata.etl import transform
from bizdata.vendors.base import DecodeError


def _raw(**overrides):
    raw = {
        "name": "Pizza Place",
        "categories": [{"alias": "pizza", "title": "Pizza"}],
        "location": {"address1": "10 Queen St W", "city": "Toronto", "state": "ON", "zip_code": "M5H 2N2"},
        "phone": "+14165550100",
        "url": "https://www.yelp.com/biz/pizza-place",
        "coordinates": {"latitude": 43.65, "longitude": -79.38},
    }
    raw.update(overrides)
    return raw


def test_to_business_listing_maps_fields():
    listing = transform.to_business_listing(_raw())

    assert listing.name == "Pizza Place"
    assert listing.category == "Pizza"
    assert listing.address == "10 Queen St W"
    assert listing.city == "Toronto"
    assert listing.province == "ON"
    assert listing.postal_code == "M5H 2N2"
    assert listing.phone == "+14165550100"
    assert listing.url == "https://www.yelp.com/biz/pizza-place"
    assert (listing.latitude, listing.longitude) == (43.65, -79.38)


def test_empty_categories_default_to_uncategorized():
    assert transform.to_business_listing(_raw(categories=[])).category == "Uncategorized"
    assert transform.to_business_listing(_raw(categories=None)).category == "Uncategorized"
    assert transform.to_business_listing(_raw(categories=[{"title": ""}, {"title": "Bars"}])).category == "Bars"


def test_missing_optional_fields_map_to_empty_values():
    raw = _raw(phone=None, url="", location={"city": "Toronto"})
    listing = transform.to_business_listing(raw)

    assert listing.phone == ""
    assert listing.url is None
    assert listing.address == ""
    assert listing.province == ""
    assert listing.postal_code == ""


@pytest.mark.parametrize(
    "coordinates",
    [None, {}, {"latitude": 43.6}, {"latitude": None, "longitude": -79.3}, {"latitude": "x", "longitude": 1}],
)
def test_coordinates_are_both_or_neither(coordinates):
    listing = transform.to_business_listing(_raw(coordinates=coordinates))
    assert listing.latitude is None
    assert listing.longitude is None


@pytest.mark.parametrize(
    "raw",
    [
        {"location": {"city": "Toronto"}},
        {"name": "  ", "location": {"city": "Toronto"}},
        {"name": "Cafe", "location": {}},
        {"name": "Cafe"},
        "not a record",
    ],
)
def test_missing_required_fields_raise_decode_error(raw):
    with pytest.raises(DecodeError):
        transform.to_business_listing(raw)


def test_dedupe_key_normalizes_case_and_spacing():
    first = transform.to_business_listing(_raw(name="Pizza  Place"))
    second = transform.to_business_listing(_raw(name="pizza place"))
    assert first.id != second.id
    assert transform.dedupe_key(first) == transform.dedupe_key(second)
