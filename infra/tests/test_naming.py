"""
Tests for deterministic naming and listener-rule priorities.
"""

import pytest

from infragraph.naming import (
    DEFAULT_PRIORITY_RANGE,
    PriorityAllocator,
    database_name,
    host_name,
    logical_id,
    priority,
    public_url,
    repository_name,
    resource_name,
    string_hash,
)


class TestStringHash:
    """Tests for the 32-bit rolling string hash."""

    def test_empty_string_hashes_to_zero(self):
        """Test that the empty string hashes to 0."""
        assert string_hash("") == 0

    def test_matches_java_string_hash(self):
        """Test known values of Java's String.hashCode."""
        assert string_hash("a") == 97
        assert string_hash("hello") == 99162322

    def test_wraps_to_signed_32_bit(self):
        """Test that overflow wraps like a 32-bit signed integer."""
        assert string_hash("polygenelubricants") == -(2**31)

    def test_hashes_utf16_code_units(self):
        """Test that characters outside the BMP hash as surrogate pairs."""
        assert string_hash("\U0001f600") == 0xD83D * 31 + 0xDE00

    def test_lone_surrogate_hashes_as_one_code_unit(self):
        """Test that an unpaired surrogate hashes like Java and JavaScript do."""
        assert string_hash("app-\ud800") == 93082452
        assert priority("app-\ud800", 1000, 50000) == 32452


class TestPriority:
    """Tests for the bounded priority function."""

    def test_checkout_api_is_stable_and_bounded(self):
        """Test that the same input gives the same in-range priority twice."""
        first = priority("checkout-api", 1000, 50000)
        second = priority("checkout-api", 1000, 50000)

        assert first == second
        assert 1000 <= first < 50000

    @pytest.mark.parametrize(
        "value", ["", "a", "my-app", "polygenelubricants", "ünïcode", "app-\ud800"]
    )
    def test_result_within_bounds(self, value):
        """Test that results stay in [lower, upper) for varied inputs."""
        assert 10 <= priority(value, 10, 17) < 17

    def test_single_slot_range(self):
        """Test that a range of one always yields the lower bound."""
        assert priority("anything", 5, 6) == 5

    def test_invalid_bounds_raise(self):
        """Test that lower >= upper is rejected."""
        with pytest.raises(ValueError):
            priority("my-app", 100, 100)

    def test_formula(self):
        """Test the documented mapping abs(h) % (upper - lower) + lower."""
        expected = abs(string_hash("my-app")) % (50000 - 1000) + 1000
        assert priority("my-app", 1000, 50000) == expected


class TestPriorityAllocator:
    """Tests for collision resolution within one listener."""

    def test_defaults_to_listener_range(self):
        """Test that the default range leaves low priorities free."""
        allocator = PriorityAllocator()
        assert (allocator.lower_bound, allocator.upper_bound) == DEFAULT_PRIORITY_RANGE

    def test_uncontested_value_gets_hashed_priority(self):
        """Test that a free slot is used as-is."""
        allocator = PriorityAllocator(1000, 50000)
        assert allocator.allocate("checkout-api") == priority("checkout-api", 1000, 50000)

    def test_same_value_gets_same_priority(self):
        """Test that allocating twice for one value is idempotent."""
        allocator = PriorityAllocator(1000, 50000)
        assert allocator.allocate("my-app") == allocator.allocate("my-app")
        assert len(allocator.taken) == 1

    def test_collision_moves_to_next_slot(self):
        """Test that a taken slot moves the value to the next free integer."""
        hashed = priority("my-app", 1000, 50000)
        allocator = PriorityAllocator(1000, 50000, taken=[hashed])

        allocated = allocator.allocate("my-app")

        expected = hashed + 1 if hashed + 1 < 50000 else 1000
        assert allocated == expected

    def test_probing_wraps_to_lower_bound(self):
        """Test that probing past the upper bound continues at the lower bound."""
        allocator = PriorityAllocator(10, 12, taken=[11])
        assert allocator.allocate("my-app") == 10

    def test_distinct_values_get_distinct_priorities(self):
        """Test that two values never share a slot."""
        allocator = PriorityAllocator(1, 3)

        first = allocator.allocate("first")
        second = allocator.allocate("second")

        assert first != second
        assert {first, second} == {1, 2}

    def test_exhausted_range_raises(self):
        """Test that a full range is reported instead of reusing a slot."""
        allocator = PriorityAllocator(1, 3)
        allocator.allocate("first")
        allocator.allocate("second")

        with pytest.raises(ValueError, match="No free priority"):
            allocator.allocate("third")

    def test_reserve_conflict_raises(self):
        """Test that an explicit priority cannot be reserved twice."""
        allocator = PriorityAllocator()
        allocator.reserve(1500, owner="api")

        with pytest.raises(ValueError, match="already taken"):
            allocator.reserve(1500, owner="web")

    def test_reserve_is_idempotent_for_owner(self):
        """Test that an owner can reserve its own priority again."""
        allocator = PriorityAllocator()
        allocator.reserve(1500, owner="api")
        allocator.reserve(1500, owner="api")

        assert allocator.taken == {1500: "api"}

    def test_colliding_values_get_distinct_priorities(self):
        """Test that two values hashing to one slot are spread apart."""
        assert priority("shop-auth", 1000, 50000) == priority("news-app", 1000, 50000)
        allocator = PriorityAllocator()

        first = allocator.allocate("shop-auth")
        second = allocator.allocate("news-app")

        assert second == first + 1


class TestNames:
    """Tests for derived resource names."""

    def test_repository_name(self):
        """Test that repositories are grouped under the project."""
        assert repository_name("portfolio", "my-app") == "portfolio/my-app"

    def test_database_name_replaces_hyphens(self):
        """Test that app names become valid Postgres identifiers."""
        assert database_name("checkout-api") == "checkout_api"

    def test_resource_name_skips_empty_parts(self):
        """Test that empty parts do not produce double hyphens."""
        assert resource_name("portfolio", "", "dev") == "portfolio-dev"

    def test_public_url_and_host(self):
        """Test the public address of an app."""
        assert host_name("api", "example.com") == "api.example.com"
        assert public_url("api", "example.com") == "https://api.example.com"

    def test_logical_id_camel_cases_names(self):
        """Test that logical names become alphanumeric CloudFormation IDs."""
        assert logical_id("portfolio-dev-vpc") == "PortfolioDevVpc"
        assert logical_id("my_app.task") == "MyAppTask"
