import json

import pytest

import gemini_service
from file_ingest import encode_payload
from gemini_service import (
    ATTACHED_FILE_NOTE,
    build_chat_contents,
    chat_with_ai,
    generate_analysis,
    parse_report,
    placeholder_report,
    ReportFormatError,
    verify_api_key,
)
from models import AppConfig, ConversationTurn
from settings import Settings

CSV_TEXT = "월,객실점유율\n2025-01,72.5\n"

VALID_REPORT = {
    "summary": "**Occupancy rose 4.2%** year over year.",
    "kpis": [
        {"label": "Occupancy Rate", "value": "78.4%", "trend": 4.2, "trendLabel": "vs last year"},
        {"label": "Rooms Sold", "value": 1520, "trend": -1.5, "trendLabel": "vs last month"},
    ],
    "chartData": [
        {"name": "Jan", "value": 72.5, "value2": 70.1},
        {"name": "Feb", "value": 68.1},
    ],
    "chartType": "composed",
    "insights": ["Weekend demand is driving growth"],
    "actions": {"shortTerm": ["Raise weekend ADR"], "midTerm": ["Renegotiate OTA commissions"]},
}


@pytest.fixture
def keyed_config():
    return AppConfig(is_configured=True, api_key="test-key")


@pytest.fixture
def file_config():
    return AppConfig(is_configured=True, api_key="test-key", data_file_name="monthly.csv",
                     data_file_payload=encode_payload(CSV_TEXT), data_file_media_type="text/csv")


def _inline_parts(parts):
    return [part for part in parts if "inline_data" in part]


def _fallback_shape(report):
    return report.kpis, report.chart_data, report.chart_type, report.insights, report.actions


class TestGenerateAnalysis:
    def test_missing_key_returns_placeholder_without_calling_backend(self, fake_gemini, settings, occupancy):
        config = AppConfig()

        report = generate_analysis(occupancy, config, None, settings)

        assert "API key is not configured" in report.summary
        assert report.kpis[0].label == occupancy.kpis[0]
        assert report.kpis[0].value == "-"
        assert report.kpis[0].trend == 0
        assert len(report.chart_data) == 6
        assert all(point.value == 0 for point in report.chart_data)
        assert fake_gemini.requests == []
        assert fake_gemini.configured_keys == []

    def test_network_error_message_ends_up_in_summary(self, fake_gemini, settings, keyed_config, occupancy):
        fake_gemini.error = ConnectionError("timeout")

        report = generate_analysis(occupancy, keyed_config, "Why did occupancy drop?", settings)

        assert "timeout" in report.summary
        assert report.category_id == "occupancy"

    def test_malformed_json_degrades_like_transport_failure(self, fake_gemini, settings, keyed_config, occupancy):
        fake_gemini.reply = "{not json"
        parse_failure = generate_analysis(occupancy, keyed_config, None, settings)

        fake_gemini.reply = ""
        fake_gemini.error = ConnectionError("connection reset")
        transport_failure = generate_analysis(occupancy, keyed_config, None, settings)

        assert _fallback_shape(parse_failure) == _fallback_shape(transport_failure)
        assert "JSON" in parse_failure.summary

    @pytest.mark.parametrize("broken", [
        {key: value for key, value in VALID_REPORT.items() if key != "kpis"},
        dict(VALID_REPORT, chartType="scatter"),
        dict(VALID_REPORT, actions={"shortTerm": ["only one list"]}),
    ])
    def test_parseable_but_wrong_shape_returns_placeholder(self, fake_gemini, settings, keyed_config,
                                                           occupancy, broken):
        fake_gemini.reply = json.dumps(broken)

        report = generate_analysis(occupancy, keyed_config, None, settings)

        assert _fallback_shape(report) == _fallback_shape(placeholder_report(occupancy))
        assert "report format" in report.summary

    def test_valid_reply_is_parsed_into_report(self, fake_gemini, settings, keyed_config, occupancy):
        fake_gemini.reply = json.dumps(VALID_REPORT)

        report = generate_analysis(occupancy, keyed_config, "Compare OTA vs direct occupancy", settings)

        assert report.category_id == "occupancy"
        assert report.chart_type == "composed"
        assert report.kpis[1].value == "1520"
        assert report.chart_data[1].value2 is None
        assert report.actions.mid_term == ["Renegotiate OTA commissions"]
        assert fake_gemini.configured_keys == ["test-key"]
        assert fake_gemini.models[0].model_name == "test-model"
        request = fake_gemini.requests[0]
        assert request.generation_config.response_mime_type == "application/json"
        assert "Compare OTA vs direct occupancy" in request.contents[0]["text"]
        assert "Occupancy Rate, Rooms Sold, Rooms Available" in request.contents[0]["text"]

    def test_prompt_uses_default_request_and_lists_sources(self, fake_gemini, settings, occupancy):
        fake_gemini.reply = json.dumps(VALID_REPORT)
        config = AppConfig(is_configured=True, api_key="k", sheet_url="https://docs.google.com/spreadsheets/d/abc")

        generate_analysis(occupancy, config, None, settings)

        prompt = fake_gemini.requests[0].contents[0]["text"]
        assert gemini_service.DEFAULT_USER_PROMPT in prompt
        assert "Google Sheet: https://docs.google.com/spreadsheets/d/abc" in prompt
        assert "Excel file: none" in prompt
        assert "January 2017 to December 2025" in prompt

    def test_data_file_is_attached_as_inline_bytes(self, fake_gemini, settings, file_config, occupancy):
        fake_gemini.reply = json.dumps(VALID_REPORT)

        generate_analysis(occupancy, file_config, None, settings)

        inline = _inline_parts(fake_gemini.requests[0].contents)
        assert len(inline) == 1
        assert inline[0]["inline_data"]["mime_type"] == "text/csv"
        assert inline[0]["inline_data"]["data"].decode("utf-8") == CSV_TEXT

    def test_fallback_key_from_settings_is_used(self, fake_gemini, tmp_path, occupancy):
        fake_gemini.reply = json.dumps(VALID_REPORT)
        settings = Settings(fallback_api_key="server-key", storage_dir=tmp_path)

        report = generate_analysis(occupancy, AppConfig(), None, settings)

        assert report.summary == VALID_REPORT["summary"]
        assert fake_gemini.configured_keys == ["server-key"]

    def test_retries_with_backoff_when_configured(self, fake_gemini, monkeypatch, tmp_path, occupancy):
        sleeps = []
        monkeypatch.setattr(gemini_service.time, "sleep", sleeps.append)
        fake_gemini.error = ConnectionError("unavailable")
        settings = Settings(fallback_api_key="k", retries=3, storage_dir=tmp_path)

        report = generate_analysis(occupancy, None, None, settings)

        assert len(fake_gemini.requests) == 3
        assert sleeps == [1, 2]
        assert "unavailable" in report.summary

    def test_empty_reply_returns_placeholder(self, fake_gemini, settings, keyed_config, occupancy):
        fake_gemini.reply = ""

        report = generate_analysis(occupancy, keyed_config, None, settings)

        assert "empty text" in report.summary


class TestParseReport:
    def test_category_id_comes_from_requested_category(self, revenue):
        report = parse_report(json.dumps(dict(VALID_REPORT, categoryId="other")), revenue)
        assert report.category_id == "revenue"

    def test_rejects_json_array(self, revenue):
        with pytest.raises(ReportFormatError):
            parse_report("[]", revenue)


class TestPlaceholderReport:
    def test_mentions_uploaded_file_when_offline(self, occupancy):
        config = AppConfig(data_file_name="monthly.xlsx")
        report = placeholder_report(occupancy, config)
        assert "monthly.xlsx" in report.summary

    def test_carries_every_category_kpi(self, revenue):
        report = placeholder_report(revenue)
        assert [kpi.label for kpi in report.kpis] == list(revenue.kpis)
        assert {kpi.trend_label for kpi in report.kpis} == {"N/A"}
        assert [point.name for point in report.chart_data] == ["Jan", "Feb", "Mar", "Apr", "May", "Jun"]
        assert report.actions.short_term == ["Reset the API key", "Check network connectivity"]


class TestVerifyApiKey:
    def test_no_key_is_rejected_without_a_call(self, fake_gemini, settings):
        assert verify_api_key("", settings) is False
        assert fake_gemini.requests == []

    def test_valid_key_is_accepted(self, fake_gemini, settings):
        fake_gemini.reply = "ok"
        assert verify_api_key("good-key", settings) is True
        assert fake_gemini.configured_keys == ["good-key"]
        assert fake_gemini.requests[0].contents == "Test connection"

    def test_failure_returns_false(self, fake_gemini, settings):
        fake_gemini.error = PermissionError("API key not valid")
        assert verify_api_key("bad-key", settings) is False


class TestChat:
    def test_first_question_carries_attachment_once(self, fake_gemini, settings, file_config, occupancy):
        fake_gemini.reply = "Occupancy peaks in **October**."

        answer = chat_with_ai("When is occupancy highest?", [], occupancy, file_config, None, settings)

        assert answer == "Occupancy peaks in **October**."
        assert fake_gemini.chats[0].history == []
        sent = fake_gemini.sent_messages[0]
        assert len(_inline_parts(sent)) == 1
        assert sent[0]["inline_data"]["data"].decode("utf-8") == CSV_TEXT
        assert sent[1] == {"text": "When is occupancy highest?"}
        assert sent[-1] == {"text": ATTACHED_FILE_NOTE}

    def test_attachment_goes_to_first_history_turn_only(self, file_config):
        turns = [ConversationTurn.create("Q1", "A1"), ConversationTurn.create("Q2", "A2")]

        history, current = build_chat_contents("Q3", turns, file_config)

        assert [entry["role"] for entry in history] == ["user", "model", "user", "model"]
        attached = [i for i, entry in enumerate(history) if _inline_parts(entry["parts"])]
        assert attached == [0]
        assert history[0]["parts"][1] == {"text": "Q1"}
        assert history[3]["parts"] == [{"text": "A2"}]
        assert current == [{"text": "Q3"}]

    def test_no_attachment_without_payload(self, keyed_config):
        history, current = build_chat_contents("Q2", [ConversationTurn.create("Q1", "A1")], keyed_config)
        assert history[0]["parts"] == [{"text": "Q1"}]
        assert current == [{"text": "Q2"}]

    def test_report_grounds_the_instruction(self, fake_gemini, settings, keyed_config, occupancy):
        fake_gemini.reply = "answer"
        report = parse_report(json.dumps(VALID_REPORT), occupancy)

        chat_with_ai("Why?", [], occupancy, keyed_config, report, settings)

        instruction = fake_gemini.models[0].system_instruction
        assert occupancy.name in instruction
        assert VALID_REPORT["summary"] in instruction
        assert '"trendLabel": "vs last year"' in instruction
        assert "Weekend demand is driving growth" in instruction

    def test_missing_key_returns_offline_message(self, fake_gemini, settings, occupancy):
        answer = chat_with_ai("Hello", [], occupancy, AppConfig(), None, settings)
        assert answer.startswith("[System: API Connection Failed]")
        assert "API key is missing" in answer
        assert fake_gemini.chats == []

    def test_backend_error_returns_offline_message(self, fake_gemini, settings, file_config, occupancy):
        fake_gemini.error = RuntimeError("quota exceeded")

        answer = chat_with_ai("Hello", [], occupancy, file_config, None, settings)

        assert "quota exceeded" in answer
        assert "monthly.csv" in answer


class TestBackendAccess:
    def test_report_call_runs_under_the_configure_lock(self, fake_gemini, settings, keyed_config, occupancy):
        fake_gemini.reply = json.dumps(VALID_REPORT)

        generate_analysis(occupancy, keyed_config, None, settings)

        assert [request.lock_held for request in fake_gemini.requests] == [True]
        assert not gemini_service.GENAI_LOCK.locked()

    def test_key_check_and_chat_run_under_the_configure_lock(self, fake_gemini, settings, keyed_config, occupancy):
        fake_gemini.reply = "ok"

        verify_api_key("k", settings)
        chat_with_ai("Hello", [], occupancy, keyed_config, None, settings)

        assert fake_gemini.requests[0].lock_held is True
        assert fake_gemini.lock_held == [True]

    def test_lock_released_after_failure(self, fake_gemini, settings, keyed_config, occupancy):
        fake_gemini.error = ConnectionError("timeout")

        generate_analysis(occupancy, keyed_config, None, settings)
        chat_with_ai("Hello", [], occupancy, keyed_config, None, settings)

        assert not gemini_service.GENAI_LOCK.locked()

    def test_backoff_needs_at_least_one_attempt(self, fake_gemini):
        model = fake_gemini.GenerativeModel("test-model")
        with pytest.raises(ValueError):
            gemini_service.call_gemini_api_with_backoff(model, [{"text": "hi"}], retries=0)
        assert fake_gemini.requests == []
