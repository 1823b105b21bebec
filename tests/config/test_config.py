"""Configuration loading, validation and bridge tests."""

from decimal import Decimal

import pytest
import yaml

from fees_config import get_active_config
from fees_config.bridges import notification_policy, student_lock_registry
from fees_config.loader import compute_checksum, load_yaml_file, parse_configuration
from fees_kernel.exceptions import ConfigurationError


def _minimal(**sections):
    data = {
        "school": {"name": "Hillside Academy", "currency": "kes"},
        "mpesa": {"business_short_code": "600100"},
    }
    data.update(sections)
    return data


class TestDefaultConfiguration:
    def test_packaged_default_loads(self):
        config = get_active_config()

        assert config.school.currency == "KES"
        assert config.mpesa.minimum_amount == Decimal("1.00")
        assert config.concurrency.max_conflict_retries == 3
        assert config.notifications.dispatch_batch_size == 100
        assert config.source.endswith("default.yaml")
        assert len(config.checksum) == 64

    def test_trace_emitted(self, captured_logs):
        config = get_active_config()

        (trace,) = [r for r in captured_logs() if r["message"] == "FEES_CONFIG_TRACE"]
        assert trace["trace_type"] == "FEES_CONFIG_TRACE"
        assert trace["checksum"] == config.checksum

    def test_custom_file(self, tmp_path):
        path = tmp_path / "school.yaml"
        path.write_text(
            yaml.safe_dump(
                _minimal(notifications={"operator_recipients": ["254700000001"]})
            )
        )

        config = get_active_config(path)

        assert config.school.name == "Hillside Academy"
        assert config.notifications.operator_recipients == ("254700000001",)

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            get_active_config(tmp_path / "absent.yaml")


class TestValidation:
    def test_defaults_for_optional_sections(self):
        config = parse_configuration(_minimal())

        assert config.school.currency == "KES"
        assert config.concurrency.student_lock_timeout_seconds == 10.0
        assert config.notifications.notify_operator_on_payment is True
        assert config.database.url is None

    def test_unknown_section(self):
        with pytest.raises(ConfigurationError, match="unknown section"):
            parse_configuration(_minimal(reporting={}))

    def test_missing_required_section(self):
        data = _minimal()
        del data["mpesa"]

        with pytest.raises(ConfigurationError, match="missing required section 'mpesa'"):
            parse_configuration(data)

    def test_missing_required_key(self):
        with pytest.raises(ConfigurationError, match="school.name"):
            parse_configuration(_minimal(school={"currency": "KES"}))

    @pytest.mark.parametrize(
        "sections,message",
        [
            ({"school": {"name": "X", "currency": "SHILLING"}}, "3-letter"),
            ({"mpesa": {"business_short_code": "1", "minimum_amount": "-1"}}, "non-negative"),
            ({"mpesa": {"business_short_code": "1", "minimum_amount": "lots"}}, "not a number"),
            ({"concurrency": {"student_lock_timeout_seconds": 0}}, "must be positive"),
            ({"concurrency": {"max_conflict_retries": 1.5}}, "integer"),
            ({"concurrency": {"max_conflict_retries": True}}, "must be a number"),
            ({"notifications": {"operator_recipients": "254700000001"}}, "must be a list"),
            ({"notifications": {"notify_operator_on_payment": "yes"}}, "true or false"),
            ({"notifications": {"dispatch_batch_size": 0}}, "must be positive"),
        ],
    )
    def test_bad_values(self, sections, message):
        with pytest.raises(ConfigurationError, match=message):
            parse_configuration(_minimal(**sections))

    def test_error_names_source(self):
        with pytest.raises(ConfigurationError) as exc_info:
            parse_configuration(_minimal(extra={}), source="/etc/fees.yaml")

        assert exc_info.value.source == "/etc/fees.yaml"
        assert exc_info.value.code == "CONFIGURATION_ERROR"

    def test_malformed_yaml(self, tmp_path):
        path = tmp_path / "broken.yaml"
        path.write_text("school: [unclosed")

        with pytest.raises(ConfigurationError, match="invalid YAML"):
            load_yaml_file(path)

    def test_top_level_must_be_mapping(self, tmp_path):
        path = tmp_path / "list.yaml"
        path.write_text("- a\n- b\n")

        with pytest.raises(ConfigurationError, match="mapping"):
            load_yaml_file(path)

    def test_checksum_ignores_key_order(self):
        assert compute_checksum({"a": 1, "b": 2}) == compute_checksum({"b": 2, "a": 1})


class TestBridges:
    def test_notification_policy(self):
        config = parse_configuration(
            _minimal(
                notifications={
                    "operator_recipients": ["254700000001", 254700000002],
                    "notify_operator_on_payment": False,
                }
            )
        )

        policy = notification_policy(config)

        assert policy.school_name == "Hillside Academy"
        assert policy.currency == "KES"
        assert policy.operator_recipients == ("254700000001", "254700000002")
        assert policy.notify_operator_on_payment is False

    def test_student_lock_registry(self):
        config = parse_configuration(
            _minimal(concurrency={"student_lock_timeout_seconds": 2.5})
        )

        assert student_lock_registry(config).timeout_seconds == 2.5


class TestOrchestratorFactory:
    def test_wired_from_file(self, tmp_path, session_factory):
        from fees_services import build_payment_orchestrator

        path = tmp_path / "school.yaml"
        path.write_text(
            yaml.safe_dump(
                _minimal(
                    concurrency={"max_conflict_retries": 5},
                    notifications={"dispatch_batch_size": 7},
                )
            )
        )

        orchestrator = build_payment_orchestrator(session_factory, config_path=path)
        student = orchestrator.register_student("CFG001", "Amina", "Otieno")

        assert orchestrator._max_conflict_retries == 5
        assert orchestrator._dispatch_batch_size == 7
        assert orchestrator._policy.school_name == "Hillside Academy"
        assert student.reference_code == "CFG001"

    def test_lock_timeout_reaches_registry(self, tmp_path, session_factory):
        from fees_services import build_payment_orchestrator

        path = tmp_path / "school.yaml"
        path.write_text(
            yaml.safe_dump(_minimal(concurrency={"student_lock_timeout_seconds": 0.25}))
        )

        orchestrator = build_payment_orchestrator(session_factory, config_path=path)

        assert orchestrator._lock_registry.timeout_seconds == 0.25
