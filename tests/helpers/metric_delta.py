"""
Assertions on Prometheus collectors around a block of code under test.
"""

from contextlib import contextmanager


def _counter_value(counter):
    try:
        return counter._value.get()
    except AttributeError:
        raise ValueError(f"{counter!r} is not a labelled counter child") from None


@contextmanager
def metric_delta(counter, expected_delta=1):
    """
    Assert that ``counter`` moves by exactly ``expected_delta`` inside the block.

    Pass the labelled child, e.g.
    ``metric_delta(METRICS["resolutions_total"].labels(outcome="created"))``.
    """
    before = _counter_value(counter)
    yield
    after = _counter_value(counter)

    assert after - before == expected_delta, f"counter went {before} -> {after}, expected +{expected_delta}"


def _observation_count(histogram):
    for family in histogram.collect():
        for sample in family.samples:
            if sample.name.endswith("_count"):
                return sample.value
    return 0.0


@contextmanager
def histogram_observes(histogram, min_observations=1):
    """Assert that ``histogram`` records at least ``min_observations`` inside the block."""
    before = _observation_count(histogram)
    yield
    observed = _observation_count(histogram) - before

    assert observed >= min_observations, f"histogram saw {observed} observations, expected {min_observations}+"
