from harvester.pipeline.models import ItemDetails, ItemReference, PageTask, Record, merge_record


def test_detail_values_win_over_listing_values():
    reference = ItemReference(
        key="k1",
        detail_url="https://x.test/k1",
        source_page="https://x.test/list",
        title="Listing title",
        description="Listing description",
        attributes={"rank": 1, "color": "blue"},
    )
    details = ItemDetails(title="Detail title", updated_at="2024-01-01",
                          attributes={"color": "red", "size": 9})

    record = merge_record(reference, details, fetched_at="2024-06-01T00:00:00+00:00")

    assert record.title == "Detail title"
    assert record.description == "Listing description"
    assert record.updated_at == "2024-01-01"
    assert record.attributes == {"rank": 1, "color": "red", "size": 9}
    assert record.source_page == "https://x.test/list"
    assert record.fetched_at == "2024-06-01T00:00:00+00:00"


def test_merge_stamps_fetch_time():
    record = merge_record(ItemReference(key="k", detail_url="https://x.test/k"), ItemDetails())

    assert record.fetched_at is not None
    assert record.title is None


def test_record_dict_form_is_stable():
    record = Record(key="k", detail_url="https://x.test/k", attributes={"a": [1, 2]})

    assert Record.from_dict(record.to_dict()) == record


def test_next_page_tracks_depth_and_parent():
    seed = PageTask(url="https://x.test/list")

    second = seed.next_page("https://x.test/list?page=2")

    assert second.depth == 1
    assert second.parent_url == seed.url
