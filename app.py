import hashlib
import logging

import streamlit as st
from dotenv import load_dotenv

from categories import CATEGORIES, default_prompt
from charts import build_chart
from config_store import ConfigStore
from dashboard_state import DashboardState, Phase
from file_ingest import UploadSlot
from gemini_service import chat_with_ai, generate_analysis, verify_api_key
from report_export import create_pdf_report, create_ppt_report
from settings import Settings

load_dotenv()
SETTINGS = Settings.from_env()
logging.basicConfig(level=SETTINGS.log_level, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
logger = logging.getLogger(__name__)

# --- Page Configuration ---
st.set_page_config(
    page_title="Hotel Theborn: Revenue Insight Dashboard",
    layout="wide",
    initial_sidebar_state="expanded"
)

# --- Session State Initialization ---
if 'config_store' not in st.session_state:
    store = ConfigStore(SETTINGS.storage_dir)
    store.load()
    st.session_state.config_store = store
if 'dashboard' not in st.session_state:
    st.session_state.dashboard = DashboardState()
if 'pending_prompt' not in st.session_state:
    st.session_state.pending_prompt = None
if 'last_auto_key' not in st.session_state:
    st.session_state.last_auto_key = None
if 'setup_file' not in st.session_state:
    st.session_state.setup_file = UploadSlot()
if 'setup_api_status' not in st.session_state:
    st.session_state.setup_api_status = 'idle'


def auto_analysis_key(dashboard, config):
    """Identifies the inputs of the automatic analysis; it reruns whenever one of them changes."""
    payload_digest = hashlib.sha1((config.data_file_payload or "").encode("ascii")).hexdigest()
    return dashboard.category.id, config.api_key, config.data_file_name, payload_digest


# --- Setup Screen ---
def render_setup(store):
    st.title("🏨 System Integration Setup")
    st.markdown(
        """
        - **Step 1:** Connect a data source (Excel/CSV upload, Google Sheets or NotebookLM link).
        - **Step 2:** Enter your Gemini API key (optional when a server key is configured).
        - **Step 3:** Open the dashboard and generate analysis reports.
        """
    )

    st.subheader("1. P&L and occupancy data (Excel/CSV)")
    uploaded_file = st.file_uploader("Upload a spreadsheet", type=["xlsx", "xls", "csv"])
    slot = st.session_state.setup_file
    if uploaded_file is None:
        slot.sync()
    else:
        slot.sync(uploaded_file.name, uploaded_file.getvalue())
    if slot.error:
        st.error(f"An error occurred while processing your file: {slot.error}")
    elif slot.data_file is not None:
        st.success(f"{slot.data_file.name} (converted to CSV)", icon="✅")

    st.subheader("2. Google Sheets link")
    sheet_url = st.text_input("Google Sheets URL", key="setup_sheet_url",
                              placeholder="https://docs.google.com/spreadsheets/d/...")
    st.subheader("3. NotebookLM link")
    notebook_url = st.text_input("NotebookLM URL", key="setup_notebook_url",
                                 placeholder="https://notebooklm.google.com/...")

    st.subheader("4. Gemini API key")
    api_key = st.text_input("Enter your Gemini API Key:", type="password",
                            help="Get yours from Google AI Studio.")
    if st.button("Verify API key", disabled=not api_key.strip()):
        with st.spinner("Verifying..."):
            st.session_state.setup_api_status = 'success' if verify_api_key(api_key.strip(), SETTINGS) else 'error'
    if st.session_state.setup_api_status == 'success':
        st.success("Gemini API key verified!", icon="✅")
    elif st.session_state.setup_api_status == 'error':
        st.error("API key verification failed. Please check the key.")

    data_file = slot.data_file
    any_source = data_file is not None or bool(sheet_url.strip()) or bool(notebook_url.strip())
    if not any_source:
        st.warning("Connect at least one data source to continue.")
    if st.button("Finish setup", key="finish_setup", type="primary", disabled=not any_source):
        store.complete_setup(
            data_file_name=data_file.name if data_file else None,
            data_file_payload=data_file.payload if data_file else None,
            data_file_media_type=data_file.media_type if data_file else "text/csv",
            sheet_url=sheet_url.strip() or None,
            notebook_url=notebook_url.strip() or None,
            api_key=api_key.strip() or None,
        )
        st.rerun()


# --- Sidebar ---
def render_sidebar(store, dashboard):
    config = store.config
    with st.sidebar:
        st.header("Analysis Categories")
        for category in CATEGORIES:
            selected = category.id == dashboard.category.id
            if st.button(f"{category.icon} {category.name}", key=f"cat_{category.id}",
                         type="primary" if selected else "secondary", use_container_width=True):
                if dashboard.select_category(category):
                    st.session_state.pending_prompt = None
                    st.rerun()

        st.markdown("---")
        st.header("Data Sources")
        if config.data_file_name:
            st.write(f"📄 {config.data_file_name}")
        if config.sheet_url:
            st.write("🔗 Sheets Connected")
        if config.notebook_url:
            st.write("📓 NotebookLM Connected")

        with st.expander("⚙️ Settings", expanded=not (config.api_key or SETTINGS.fallback_api_key)):
            if config.api_key:
                st.success("Gemini Active", icon="✅")
            elif SETTINGS.fallback_api_key:
                st.info("Using the server API key.")
            else:
                st.error("API Key Missing")
            new_key = st.text_input("AI Studio API Key", value=config.api_key or "", type="password")
            if st.button("Save and connect", disabled=not new_key.strip()):
                with st.spinner("Verifying..."):
                    valid = verify_api_key(new_key.strip(), SETTINGS)
                if valid:
                    store.update(api_key=new_key.strip())
                    st.success("API key connected successfully.")
                    st.rerun()
                else:
                    st.error("API key verification failed. Please check it again.")
            if st.button("Clear configuration"):
                store.clear()
                st.session_state.dashboard = DashboardState()
                st.session_state.last_auto_key = None
                st.session_state.setup_file = UploadSlot()
                st.rerun()


# --- Core Analysis Logic ---
def run_analysis(store, dashboard, prompt):
    config = store.config
    token = dashboard.begin_report()
    try:
        with st.spinner(f"AI is analyzing '{prompt or dashboard.category.name}'..."):
            report = generate_analysis(dashboard.category, config, prompt, SETTINGS)
        dashboard.finish_report(token, report)
    finally:
        # Streamlit stops the run mid-request when the user clicks something else.
        dashboard.abandon_report(token)


def render_input_view(dashboard):
    category = dashboard.category
    st.subheader(f"{category.icon} {category.name}")
    st.caption(category.description)
    with st.form("analysis_request"):
        prompt = st.text_area("What would you like to analyze?",
                              placeholder=f"Ask anything about {category.name}...")
        if st.form_submit_button("Generate report", type="primary") and prompt.strip():
            st.session_state.pending_prompt = prompt.strip()
            st.rerun()
    st.markdown("**Suggestions**")
    columns = st.columns(len(category.suggestions))
    for column, suggestion in zip(columns, category.suggestions):
        with column:
            if st.button(suggestion, key=f"suggest_{category.id}_{suggestion}", use_container_width=True):
                st.session_state.pending_prompt = suggestion
                st.rerun()


def render_report(store, dashboard):
    report, category = dashboard.report, dashboard.category
    header, reset = st.columns([5, 1])
    with header:
        st.subheader(f"{category.icon} {category.name}")
    with reset:
        if st.button("🔄 New analysis", key="reset_report"):
            dashboard.reset()
            st.rerun()

    st.markdown(report.summary)

    if report.kpis:
        for column, kpi in zip(st.columns(len(report.kpis)), report.kpis):
            with column:
                st.metric(kpi.label, kpi.value, delta=f"{kpi.trend:+.1f}% {kpi.trend_label}")

    if report.chart_data:
        st.plotly_chart(build_chart(report), use_container_width=True)

    st.markdown("#### 💡 Key Insights")
    for insight in report.insights:
        st.markdown(f"- {insight}")

    short_col, mid_col = st.columns(2)
    with short_col:
        st.markdown("#### ✅ Short-term Actions")
        for action in report.actions.short_term:
            st.markdown(f"- {action}")
    with mid_col:
        st.markdown("#### 🎯 Mid-term Actions")
        for action in report.actions.mid_term:
            st.markdown(f"- {action}")

    st.header("⬇️ Download Report")
    col1, col2 = st.columns(2)
    with col1:
        st.download_button(label="📥 Download as PDF",
                           data=create_pdf_report(report, category, dashboard.turns),
                           file_name=f"{category.id}_report.pdf", mime="application/pdf")
    with col2:
        st.download_button(label="📥 Download as PPTX",
                           data=create_ppt_report(report, category, dashboard.turns),
                           file_name=f"{category.id}_report.pptx",
                           mime="application/vnd.openxmlformats-officedocument.presentationml.presentation")

    render_follow_ups(store, dashboard)


def render_follow_ups(store, dashboard):
    st.header("💬 Follow-up Questions")
    for turn in dashboard.turns:
        with st.chat_message("user"):
            st.markdown(turn.question)
        with st.chat_message("assistant"):
            st.markdown(turn.answer)

    question = st.chat_input(f"Ask a follow-up question about {dashboard.category.name}...",
                             disabled=dashboard.follow_up_pending)
    if question and question.strip():
        token = dashboard.begin_follow_up()
        try:
            with st.chat_message("user"):
                st.markdown(question)
            with st.chat_message("assistant"):
                with st.spinner("Thinking..."):
                    answer = chat_with_ai(question, list(dashboard.turns), dashboard.category, store.config,
                                          dashboard.report, SETTINGS)
            dashboard.finish_follow_up(token, question, answer or "Sorry, I could not generate an answer.")
        finally:
            dashboard.abandon_follow_up(token)
        st.rerun()


def render_dashboard(store, dashboard):
    st.title("Hotel Theborn: Revenue Insight Dashboard")
    render_sidebar(store, dashboard)

    config = store.config
    auto_key = auto_analysis_key(dashboard, config)
    if st.session_state.pending_prompt is not None:
        prompt = st.session_state.pending_prompt
        st.session_state.pending_prompt = None
        run_analysis(store, dashboard, prompt)
    elif auto_key != st.session_state.last_auto_key:
        st.session_state.last_auto_key = auto_key
        run_analysis(store, dashboard, default_prompt(dashboard.category))

    if dashboard.phase is Phase.REPORT:
        render_report(store, dashboard)
    else:
        render_input_view(dashboard)


# --- Main Application Flow ---
config_store = st.session_state.config_store
if config_store.config.is_configured:
    render_dashboard(config_store, st.session_state.dashboard)
else:
    render_setup(config_store)
