"""Test that the project setup is working correctly."""

import gift_listing_tracker


def test_version() -> None:
    """Test that version is defined."""
    assert gift_listing_tracker.__version__ == "0.1.0"


def test_import_modules() -> None:
    """Test that all submodules can be imported."""
    from gift_listing_tracker import alerter, enrichment, ingestor, pipeline, preferences

    # Just verify imports work
    assert ingestor is not None
    assert enrichment is not None
    assert preferences is not None
    assert alerter is not None
    assert pipeline is not None
