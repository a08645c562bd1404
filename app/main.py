"""
Streamlit Frontend for Expense Tracker

DESIGN PRINCIPLES:
1. One form for typing, scanning and editing records
2. Explicit review before anything is saved
3. Clear error messages; store errors never crash the page
4. The dashboard always shows one consistent snapshot

The UI holds no business logic. It renders what the flows return:
a result and a Notification for every action.
"""

import asyncio
from datetime import date
from decimal import Decimal
from typing import Optional

import streamlit as st

from expense_tracker.audit import create_correlation_id
from expense_tracker.config import get_settings, validate_all_settings
from expense_tracker.forms import FIELD_LABELS, RecordForm
from expense_tracker.models.notification import Notification, NotificationLevel
from expense_tracker.models.record import OTHER_CATEGORY, Record
from expense_tracker.orchestrator import (
    AppComponents,
    DashboardFlow,
    RecordFlow,
    create_app_components,
)
from expense_tracker.services.export import ExcelExporter


# Page configuration
st.set_page_config(
    page_title="Expense Tracker",
    page_icon="💸",
    layout="wide",
    initial_sidebar_state="expanded",
)

st.markdown("""
<style>
    .stButton>button {
        width: 100%;
        margin-top: 10px;
    }
    .error-box {
        padding: 20px;
        background-color: #f8d7da;
        border-radius: 10px;
        border-left: 5px solid #dc3545;
        margin: 10px 0;
    }
</style>
""", unsafe_allow_html=True)

CATEGORIES = ["Food", "Transport", "Shopping", "Bills", "Health", "Education", OTHER_CATEGORY]


def run_async(coro):
    """Helper to run async functions in Streamlit."""
    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)
    try:
        return loop.run_until_complete(coro)
    finally:
        loop.close()


@st.cache_resource
def get_components() -> AppComponents:
    """Get or create application components (cached)."""
    components = create_app_components()
    components.dashboard_flow.start()
    return components


def get_form() -> RecordForm:
    app_settings = get_settings().app
    if "record_form" not in st.session_state:
        st.session_state.record_form = RecordForm(
            collected_currency=app_settings.collected_currency,
            transfer_currency=app_settings.transfer_currency,
        )
        st.session_state.form_version = 0
    return st.session_state.record_form


def refresh_form_widgets() -> None:
    """Widgets re-read their values from the form on the next run."""
    st.session_state.form_version = st.session_state.get("form_version", 0) + 1


def show_notification(notification: Optional[Notification]) -> None:
    if notification is None:
        return
    text = f"**{notification.title}**"
    if notification.message:
        text += f"  \n{notification.message}"
    if notification.level == NotificationLevel.SUCCESS:
        st.success(text)
    elif notification.level == NotificationLevel.INFO:
        st.info(text)
    elif notification.level == NotificationLevel.WARNING:
        st.warning(text)
    else:
        st.error(text)
    for field, message in notification.field_errors.items():
        st.caption(f"• {FIELD_LABELS.get(field, field)}: {message}")


def flash(notification: Notification) -> None:
    """Show a notification after the next rerun."""
    st.session_state.flash = notification


def main():
    """Main application entry point."""
    components = get_components()

    st.sidebar.title("💸 Expense Tracker")
    st.sidebar.markdown("---")

    page = st.sidebar.radio(
        "Navigate to:",
        ["📝 New Record", "📊 Dashboard", "📋 Records", "⚙️ Settings"],
        index=0,
    )

    show_notification(st.session_state.pop("flash", None))

    if page == "📝 New Record":
        render_form_page(components.record_flow)
    elif page == "📊 Dashboard":
        render_dashboard_page(components.dashboard_flow)
    elif page == "📋 Records":
        render_records_page(components.record_flow, components.dashboard_flow)
    elif page == "⚙️ Settings":
        render_settings_page()


# =============================================================================
# FORM
# =============================================================================

def _amount_input(form: RecordForm, field: str, version: int, label: str) -> None:
    current = form.get(field)
    value = st.number_input(
        label,
        min_value=0.0,
        value=float(current) if current is not None else 0.0,
        step=0.01,
        format="%.4f" if field == "buying_rate" else "%.2f",
        key=f"{field}_{version}",
    )
    form.set_value(field, Decimal(str(value)))


def _text_input(form: RecordForm, field: str, version: int) -> None:
    value = st.text_input(
        FIELD_LABELS[field],
        value=form.get(field) or "",
        key=f"{field}_{version}",
    )
    form.set_value(field, value)


def render_form_page(record_flow: RecordFlow):
    form = get_form()
    version = st.session_state.form_version

    if form.editing is not None:
        st.title(f"✏️ Edit Record #{form.editing.display_id}")
    else:
        st.title("📝 New Record")

    # Receipt image
    st.markdown("### Receipt")
    uploaded_file = st.file_uploader(
        "Attach a receipt photo",
        type=get_settings().app.supported_formats_list,
        key=f"upload_{version}",
    )
    if uploaded_file and st.button("📎 Attach Image"):
        attachment, notification = run_async(
            record_flow.attach(
                form,
                filename=uploaded_file.name,
                data=uploaded_file.getvalue(),
                mime_type=uploaded_file.type,
            )
        )
        show_notification(notification)

    for index, attachment in enumerate(form.attachments):
        col1, col2, col3 = st.columns([3, 1, 1])
        with col1:
            st.image(attachment.url, caption=attachment.name, width=240)
        with col2:
            if record_flow.can_scan and st.button("🔍 Scan", key=f"scan_{index}_{version}"):
                with st.spinner("Reading the receipt..."):
                    merge, notification = run_async(record_flow.scan(form, attachment))
                if merge and merge.accepted:
                    refresh_form_widgets()
                flash(notification)
                st.rerun()
        with col3:
            if st.button("🗑️ Remove", key=f"remove_{index}_{version}"):
                form.remove_attachment(index)
                st.rerun()

    # Details
    st.markdown("### Details")
    col1, col2 = st.columns(2)
    with col1:
        _text_input(form, "group_name", version)
        form.set_value("record_date", st.date_input(
            FIELD_LABELS["record_date"],
            value=form.get("record_date") or date.today(),
            key=f"record_date_{version}",
        ))
        _text_input(form, "bank_type", version)
        _text_input(form, "township", version)
        _text_input(form, "bank_account_number", version)
    with col2:
        _text_input(form, "nrc_number", version)
        _text_input(form, "name", version)
        _text_input(form, "phone_number", version)
        current_category = form.get("category")
        category = st.selectbox(
            FIELD_LABELS["category"],
            options=[None] + CATEGORIES,
            index=(CATEGORIES.index(current_category) + 1) if current_category in CATEGORIES else 0,
            format_func=lambda c: "-" if c is None else c,
            key=f"category_{version}",
        )
        form.set_value("category", category)
        if category == OTHER_CATEGORY:
            _text_input(form, "other_category", version)

    # Amounts
    st.markdown("### Amounts")
    collected_currency = form.collected_currency
    transfer_currency = form.transfer_currency
    col1, col2, col3 = st.columns(3)
    with col1:
        _amount_input(form, "collected_amount", version, f"Collected Amount ({collected_currency})")
        _amount_input(form, "service_fee", version, f"Service Fee ({collected_currency})")
        st.metric("Total Amount", f"{collected_currency} {form.derived.total_amount:,.2f}")
    with col2:
        _amount_input(form, "buying_rate", version, "Buying Rate")
        st.metric("Converted Amount", f"{transfer_currency} {form.derived.converted_amount:,.2f}")
    with col3:
        _amount_input(form, "transfer_fee", version, f"Transfer Fee ({transfer_currency})")
        st.metric(
            "Total Transfer Amount",
            f"{transfer_currency} {form.derived.total_transfer_amount:,.2f}",
        )

    form.set_value("remark", st.text_area(
        FIELD_LABELS["remark"],
        value=form.get("remark") or "",
        key=f"remark_{version}",
    ))

    # Review and save
    st.markdown("---")
    with st.expander("🔎 Review before saving", expanded=False):
        for label, value in form.review_lines():
            st.markdown(f"**{label}:** {value}")

    col1, col2 = st.columns(2)
    with col1:
        action = "💾 Update Record" if form.editing is not None else "💾 Save Record"
        if st.button(action, type="primary", disabled=record_flow.busy):
            correlation_id = create_correlation_id()
            with st.spinner("Saving..."):
                if form.editing is not None:
                    record, notification = run_async(record_flow.update(form, correlation_id))
                else:
                    record, notification = run_async(record_flow.create(form, correlation_id))
            if record is not None:
                form.reset()
                refresh_form_widgets()
                flash(notification)
                st.rerun()
            show_notification(notification)
    with col2:
        if st.button("↩️ Clear Form"):
            form.reset()
            refresh_form_widgets()
            st.rerun()


# =============================================================================
# DASHBOARD
# =============================================================================

def _chart(title: str, data, label: str) -> None:
    st.markdown(f"#### {title}")
    if not data:
        st.caption("No data")
        return
    st.bar_chart(
        {label: [d.name for d in data], "Total": [float(d.total) for d in data]},
        x=label,
        y="Total",
    )


def render_error_state(dashboard_flow: DashboardFlow) -> bool:
    """Replace the page with the persistent error, if there is one."""
    error = run_async(dashboard_flow.error_state())
    if error is None:
        return False
    st.markdown(f"""
    <div class="error-box">
        <h4>⚠️ {error.title}</h4>
        <p>{error.message}</p>
    </div>
    """, unsafe_allow_html=True)
    if st.button("🔄 Try Again"):
        _, notification = run_async(dashboard_flow.reload())
        flash(notification)
        st.rerun()
    return True


def render_dashboard_page(dashboard_flow: DashboardFlow):
    st.title("📊 Dashboard")

    if render_error_state(dashboard_flow):
        return

    summary = dashboard_flow.summary()
    if summary is None or summary.is_empty:
        st.info("📋 No records yet. Use the 'New Record' page to add the first one.")
        return

    app_settings = get_settings().app
    collected = app_settings.collected_currency
    transfer = app_settings.transfer_currency

    col1, col2, col3, col4 = st.columns(4)
    col1.metric("Transactions", summary.transaction_count)
    col2.metric("Total Amount", f"{collected} {summary.total_amount:,.2f}")
    col3.metric("Average Amount", f"{collected} {summary.average_total_amount:,.2f}")
    col4.metric("Total Transfer", f"{transfer} {summary.total_transfer_amount:,.2f}")

    col1, col2 = st.columns(2)
    with col1:
        _chart("By Bank", summary.by_bank, "Bank")
        _chart("By Township", summary.by_township, "Township")
    with col2:
        _chart("By Group", summary.by_group, "Group")
        _chart("By Category", summary.by_category, "Category")

    st.markdown("### Recent Records")
    for record in summary.recent:
        st.markdown(
            f"**#{record.display_id}** · {record.record_date:%d %b %Y} · "
            f"{record.group_name} · {record.bank_type} · "
            f"{collected} {record.total_amount:,.2f}"
        )


# =============================================================================
# RECORDS
# =============================================================================

def render_records_page(record_flow: RecordFlow, dashboard_flow: DashboardFlow):
    st.title("📋 Records")

    if render_error_state(dashboard_flow):
        return

    snapshot = dashboard_flow.snapshot
    records = list(snapshot.records) if snapshot else []

    col1, col2 = st.columns(2)
    with col1:
        if records:
            content, _ = run_async(dashboard_flow.export_excel())
            st.download_button(
                "⬇️ Download Excel",
                data=content,
                file_name=f"records_{date.today().isoformat()}.xlsx",
                mime=ExcelExporter.CONTENT_TYPE,
            )
    with col2:
        if dashboard_flow.can_export_to_sheets and st.button("📤 Export to Google Sheets"):
            _, notification = run_async(dashboard_flow.export_to_sheets())
            show_notification(notification)

    if not records:
        st.info("📋 No records yet.")
        return

    search = st.text_input("Search", placeholder="Group, bank, name or phone")
    if search:
        needle = search.strip().lower()
        records = [r for r in records if _matches(r, needle)]

    for record in reversed(records):
        with st.expander(
            f"#{record.display_id} · {record.record_date:%d %b %Y} · "
            f"{record.group_name} · {record.bank_type}"
        ):
            form = RecordForm.from_record(record)
            for label, value in form.review_lines():
                st.markdown(f"**{label}:** {value}")
            for attachment in record.uploaded_files:
                st.image(attachment.url, caption=attachment.name, width=240)

            col1, col2 = st.columns(2)
            with col1:
                if st.button("✏️ Edit", key=f"edit_{record.id}"):
                    app_settings = get_settings().app
                    st.session_state.record_form = RecordForm.from_record(
                        record,
                        collected_currency=app_settings.collected_currency,
                        transfer_currency=app_settings.transfer_currency,
                    )
                    refresh_form_widgets()
                    flash(Notification.success(
                        "Editing record",
                        f"Open 'New Record' to edit #{record.display_id}.",
                    ))
                    st.rerun()
            with col2:
                if st.button("🗑️ Delete", key=f"delete_{record.id}", disabled=record_flow.busy):
                    _, notification = run_async(record_flow.delete(record))
                    flash(notification)
                    st.rerun()


def _matches(record: Record, needle: str) -> bool:
    haystack = [
        record.group_name,
        record.bank_type,
        record.name or "",
        record.phone_number or "",
        record.township or "",
    ]
    return any(needle in value.lower() for value in haystack)


# =============================================================================
# SETTINGS
# =============================================================================

def render_settings_page():
    """Render the settings page."""
    st.title("⚙️ Settings")

    st.markdown("### Connection Status")

    status = validate_all_settings()
    backend = get_settings().app.storage_backend

    services = [
        ("Firestore (Storage)", "firestore"),
        ("Gemini (Receipt Scanning)", "gemini"),
        ("Google Sheets (Export)", "google_sheets"),
    ]

    for name, key in services:
        if status.get(key, False):
            st.success(f"✅ {name} - Configured")
        elif key == "firestore" and backend == "memory":
            st.info(f"ℹ️ {name} - Not used (in-memory storage)")
        else:
            error = status.get(f"{key}_error", "Not configured")
            st.error(f"❌ {name} - {error}")

    st.markdown("---")
    st.markdown("### Configuration")
    st.markdown(
        "To configure the application, create a `.env` file with your settings. "
        "See `.env.example` for the available variables."
    )


if __name__ == "__main__":
    main()
