import json
import logging
import threading
import time
from typing import List, Optional, Sequence, Tuple

import google.generativeai as genai
from pydantic import ValidationError

from categories import ANALYSIS_PERIOD, Category
from file_ingest import CSV_MEDIA_TYPE, decode_payload
from models import AnalysisReport, AppConfig, ConversationTurn
from settings import Settings

logger = logging.getLogger(__name__)

SYSTEM_INSTRUCTION = f"""
You are the Senior Revenue Manager and lead strategy analyst of Hotel Theborn.
You analyze a large monthly time series covering {ANALYSIS_PERIOD} and propose strategies
for maximizing room revenue (RevPAR), improving cost efficiency and responding to market changes.

Unless the user asks otherwise, every analysis and figure refers to the period {ANALYSIS_PERIOD}.

[Answer format guidelines]
Use **Markdown** generously so the answer is easy to read and visually emphasized.
1. **Key figures and findings**: highlight them in **bold** (e.g. **25% growth**, **RevPAR 120,000 KRW**).
2. **Comparisons**: use **tables** instead of running text for year-over-year or month-over-month changes.
3. **Infographic style**:
   - Use emoji to draw attention (📈, 📉, 💰, ⚠️, ✅).
   - Use text bar charts where helpful (e.g. 2024 ■■■■■■□□□□ 60%).
4. **Structure**: prefer bullet points (-, *) and numbered lists (1., 2.) over long paragraphs.

[Analysis principles]
1. Data-driven decisions: every answer must be based on the attached file data or real statistics.
2. Comparative analysis: YoY (same period last year) and MoM (previous month) comparisons.
3. Correlations between metrics: OCC vs ADR, GOP vs cost structure, and so on.
4. Root cause plus remedy: give actionable strategies, not just a list of facts.
"""

REPORT_JSON_SHAPE = """
{
  "summary": "analysis summary (must reflect the attached data figures and the user's request)",
  "kpis": [
    { "label": "KPI name", "value": "display value", "trend": number (percent, signed), "trendLabel": "comparison basis" }
  ],
  "chartData": [
    { "name": "month/day/item", "value": number, "value2": number (optional) }
  ],
  "chartType": "area" | "line" | "bar" | "pie" | "composed",
  "insights": ["insight 1", "insight 2", "insight 3"],
  "actions": {
    "shortTerm": ["short-term strategy 1", "short-term strategy 2"],
    "midTerm": ["mid-term strategy 1", "mid-term strategy 2"]
  }
}
"""

DEFAULT_USER_PROMPT = (
    "Give a comprehensive analysis of the overall performance of this category, "
    "the main trend changes and the areas that need improvement."
)
MISSING_KEY_MESSAGE = "API key is not configured."
ATTACHED_FILE_NOTE = "\n[System: Attached data file for analysis.]"
PLACEHOLDER_MONTHS = ("Jan", "Feb", "Mar", "Apr", "May", "Jun")

# genai.configure() sets a process-wide key and the client is built lazily on the first call,
# so configuring and calling have to happen together while sessions run on separate threads.
GENAI_LOCK = threading.Lock()


class ReportFormatError(ValueError):
    """The backend replied, but not with a report we can use."""


# --- Gemini API Call Functions ---
def resolve_api_key(config: Optional[AppConfig], settings: Settings) -> Optional[str]:
    if config is not None and config.api_key:
        return config.api_key
    return settings.fallback_api_key


def get_model(api_key: str, model_name: str, system_instruction: Optional[str] = None):
    genai.configure(api_key=api_key)
    return genai.GenerativeModel(model_name=model_name, system_instruction=system_instruction)


def response_text(response) -> str:
    if not response or not response.candidates or not response.candidates[0].content.parts:
        raise ReportFormatError("API responded with empty text.")
    text = response.text
    if not text:
        raise ReportFormatError("API responded with empty text.")
    return text


def call_gemini_api_with_backoff(model, contents, retries=1, generation_config=None):
    """Calls the model, retrying with exponential backoff when `retries` > 1. The last error is re-raised."""
    if retries < 1:
        raise ValueError(f"retries must be at least 1, got {retries}")
    for i in range(retries):
        try:
            response = model.generate_content(contents, generation_config=generation_config)
            response_text(response)
            return response
        except Exception as e:
            if i < retries - 1:
                logger.warning("API call failed, retrying in %ss... Error: %s", 2 ** i, e)
                time.sleep(2 ** i)
            else:
                raise


def verify_api_key(api_key: Optional[str], settings: Optional[Settings] = None) -> bool:
    """Sends one minimal request with `api_key` (or the fallback key) and reports whether it went through."""
    settings = settings or Settings.from_env()
    key = api_key or settings.fallback_api_key
    if not key:
        return False
    try:
        with GENAI_LOCK:
            model = get_model(key, settings.model_name)
            model.generate_content("Test connection")
        return True
    except Exception:
        logger.exception("API verification failed")
        return False


# --- Prompt Construction ---
def build_data_part(config: Optional[AppConfig]) -> Optional[dict]:
    if config is None or not config.data_file_payload:
        return None
    return {
        "inline_data": {
            "mime_type": config.data_file_media_type or CSV_MEDIA_TYPE,
            "data": decode_payload(config.data_file_payload),
        }
    }


def build_report_prompt(category: Category, config: Optional[AppConfig], user_prompt: Optional[str]) -> str:
    data_context = ""
    if config is not None:
        data_context = f"""
    [Reference data sources]
    1. Excel file: {config.data_file_name or 'none'}
    2. Google Sheet: {config.sheet_url or 'none'}
    3. NotebookLM: {config.notebook_url or 'none'}

    If file data is attached, analyze it first and foremost when writing the report.
    """
    return f"""
    {data_context}
    Selected category: {category.name}
    Description: {category.description}
    Key KPIs: {', '.join(category.kpis)}
    Default data period: {ANALYSIS_PERIOD}

    [User analysis request]
    "{user_prompt or DEFAULT_USER_PROMPT}"

    Focusing on the request above, produce an in-depth analysis report for this category in JSON.
    JSON schema:
    {REPORT_JSON_SHAPE}
    """


def parse_report(text: str, category: Category) -> AnalysisReport:
    if not text:
        raise ReportFormatError("API responded with empty text.")
    try:
        data = json.loads(text)
    except json.JSONDecodeError as e:
        raise ReportFormatError("Could not parse the response as JSON. Please check the data format.") from e
    if not isinstance(data, dict):
        raise ReportFormatError(f"Expected a JSON object, got {type(data).__name__}.")

    data.pop("category_id", None)
    data["categoryId"] = category.id
    try:
        return AnalysisReport.model_validate(data)
    except ValidationError as e:
        fields = sorted({".".join(str(p) for p in err["loc"]) for err in e.errors()})
        raise ReportFormatError(f"The response does not match the report format (invalid fields: {', '.join(fields)}).") from e


# --- Fallbacks ---
def placeholder_report(category: Category, config: Optional[AppConfig] = None,
                       error: Optional[str] = None) -> AnalysisReport:
    if error:
        summary = (
            "[System error] A problem occurred while calling the API.\n"
            f"Error: {error}\n\n"
            "Please check in the settings menu (⚙️) that a valid Gemini API key has been entered."
        )
    elif config is not None and config.data_file_name:
        summary = f"[Offline mode] {config.data_file_name} was detected, but an API connection is required."
    else:
        summary = f"{category.name} analysis (demo data)"

    return AnalysisReport(
        category_id=category.id,
        summary=summary,
        kpis=[{"label": label, "value": "-", "trend": 0, "trend_label": "N/A"} for label in category.kpis],
        chart_type="area",
        chart_data=[{"name": month, "value": 0, "value2": 0} for month in PLACEHOLDER_MONTHS],
        insights=[
            "If the error persists, refresh the page or enter the API key again.",
            "Please check your network connection.",
        ],
        actions={
            "short_term": ["Reset the API key", "Check network connectivity"],
            "mid_term": ["Contact the administrator"],
        },
    )


def offline_chat_message(category: Category, config: Optional[AppConfig], error: str) -> str:
    if config is not None and config.data_file_name:
        source = f"the uploaded file '{config.data_file_name}' and"
    else:
        source = "the local database and"
    return (
        "[System: API Connection Failed]\n"
        f"Error details: {error}\n\n"
        f"Running in offline analysis mode on {source} the {category.name} data.\n"
        "Please check your network connection or API key settings.\n\n"
        "[Expected answer (simulation)]\n"
        "An API connection is required to analyze your question. Please try again once connected."
    )


# --- Core Analysis Logic ---
def generate_analysis(category: Category, config: Optional[AppConfig] = None,
                      user_prompt: Optional[str] = None, settings: Optional[Settings] = None) -> AnalysisReport:
    """
    Requests a JSON report for `category` from Gemini.

    Never raises: a missing key, a failed call or an unusable reply all come back
    as a placeholder report whose summary carries the reason.
    """
    settings = settings or Settings.from_env()
    api_key = resolve_api_key(config, settings)
    if not api_key:
        logger.warning("API key missing, returning placeholder report")
        return placeholder_report(category, config, MISSING_KEY_MESSAGE)

    try:
        contents = [{"text": build_report_prompt(category, config, user_prompt)}]
        data_part = build_data_part(config)
        if data_part:
            contents.append(data_part)

        generation_config = genai.types.GenerationConfig(response_mime_type="application/json")
        with GENAI_LOCK:
            model = get_model(api_key, settings.model_name, SYSTEM_INSTRUCTION)
            response = call_gemini_api_with_backoff(model, contents, retries=settings.retries,
                                                    generation_config=generation_config)
        report = parse_report(response_text(response), category)
        logger.info("Report generated for %s (%d KPIs, %d chart points)",
                    category.id, len(report.kpis), len(report.chart_data))
        return report
    except Exception as e:
        logger.exception("Gemini API error for category %s", category.id)
        return placeholder_report(category, config, str(e) or type(e).__name__)


# --- Follow-up Chat ---
def build_chat_contents(question: str, prior_turns: Sequence[ConversationTurn],
                        config: Optional[AppConfig]) -> Tuple[List[dict], List[dict]]:
    """
    Rebuilds the chat history and the outgoing message parts.

    The data file goes out once per session: in front of the first user turn of the
    history, or in front of the new question when there is no history yet.
    """
    data_part = build_data_part(config)
    file_injected = False

    history = []
    for turn in prior_turns:
        user_parts = [{"text": turn.question}]
        if data_part and not file_injected:
            user_parts.insert(0, data_part)
            file_injected = True
        history.append({"role": "user", "parts": user_parts})
        history.append({"role": "model", "parts": [{"text": turn.answer}]})

    current_parts = [{"text": question}]
    if data_part and not file_injected:
        current_parts.insert(0, data_part)
        current_parts.append({"text": ATTACHED_FILE_NOTE})
    return history, current_parts


def build_chat_instruction(category: Category, report: Optional[AnalysisReport]) -> str:
    instruction = SYSTEM_INSTRUCTION + f"\nCategory currently being analyzed: {category.name}"
    if report is not None:
        kpis = json.dumps([kpi.model_dump(by_alias=True) for kpi in report.kpis], ensure_ascii=False)
        instruction += (
            "\n\n[Analysis report currently shown on screen]\n"
            f"Summary: {report.summary}\n"
            f"KPI: {kpis}\n"
            f"Insights: {', '.join(report.insights)}\n\n"
            "The user's question is a follow-up on the report above and the attached data file."
        )
    return instruction


def chat_with_ai(question: str, prior_turns: Sequence[ConversationTurn], category: Category,
                 config: Optional[AppConfig] = None, report: Optional[AnalysisReport] = None,
                 settings: Optional[Settings] = None) -> str:
    settings = settings or Settings.from_env()
    api_key = resolve_api_key(config, settings)
    if not api_key:
        return offline_chat_message(category, config, "API key is missing in configuration.")

    try:
        history, current_parts = build_chat_contents(question, prior_turns, config)
        with GENAI_LOCK:
            model = get_model(api_key, settings.model_name, build_chat_instruction(category, report))
            chat = model.start_chat(history=history)
            response = chat.send_message(current_parts)
        return response_text(response)
    except Exception as e:
        logger.exception("Chat API error for category %s", category.id)
        return offline_chat_message(category, config, str(e) or type(e).__name__)
