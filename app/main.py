"""
Streamlit Frontend for Pocket Planner

A thin presentation layer over the ledger core.

DESIGN PRINCIPLES:
1. Simple, clear interface
2. Every number shown comes from a store snapshot or a Report
3. Clear error messages in simple language
4. Visual feedback for all operations (notification queue)

No ledger rules live here. The page only renders snapshots and calls
the flows in pocket_planner.orchestrator.
"""

import asyncio
from uuid import uuid4

import streamlit as st

from pocket_planner.config import get_settings, validate_all_settings
from pocket_planner.errors import NotAuthenticated
from pocket_planner.models.analytics import Window
from pocket_planner.notifications import NotificationSeverity
from pocket_planner.orchestrator import AppComponents, create_app_components


# Page configuration
st.set_page_config(
    page_title="Pocket Planner",
    page_icon="💰",
    layout="wide",
    initial_sidebar_state="expanded",
)

# Custom CSS for better UX
st.markdown("""
<style>
    .stButton>button {
        width: 100%;
        margin-top: 10px;
    }
    .big-number {
        font-size: 2.5em;
        font-weight: bold;
        color: #2c3e50;
    }
    .category-chip {
        padding: 8px 12px;
        border-radius: 10px;
        margin: 4px 0;
        color: #ffffff;
    }
</style>
""", unsafe_allow_html=True)


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
    run_async(components.start())
    return components


def money(value) -> str:
    return f"{get_settings().ledger.currency_symbol}{value:,.2f}"


def render_notifications(components: AppComponents):
    """Show live notifications; errors stay until dismissed."""
    queue = components.notifications
    queue.expire()
    for notification in queue.active():
        if notification.severity == NotificationSeverity.ERROR:
            col1, col2 = st.columns([6, 1])
            with col1:
                st.error(notification.message)
            with col2:
                if st.button("✖", key=f"dismiss-{notification.id}"):
                    queue.dismiss(notification.id)
                    st.rerun()
        elif notification.severity == NotificationSeverity.WARNING:
            st.warning(notification.message)
        elif notification.severity == NotificationSeverity.INFO:
            st.info(notification.message)
        else:
            st.success(notification.message)


def main():
    """Main application entry point."""
    try:
        components = get_components()
    except NotAuthenticated as e:
        st.error(e.user_message)
        st.info("Set DEFAULT_USER_ID in your `.env` file to start a local session.")
        st.stop()

    # Sidebar navigation
    st.sidebar.title("💰 Pocket Planner")
    st.sidebar.markdown("---")

    page = st.sidebar.radio(
        "Navigate to:",
        ["🏠 Budget", "➕ Add Expense", "📊 Analytics", "⚙️ Settings"],
        index=0,
    )

    render_notifications(components)

    # Route to appropriate page
    if page == "🏠 Budget":
        render_budget_page(components)
    elif page == "➕ Add Expense":
        render_expense_page(components)
    elif page == "📊 Analytics":
        render_analytics_page(components)
    elif page == "⚙️ Settings":
        render_settings_page()


def render_budget_page(components: AppComponents):
    """Render the budget overview with category management."""
    st.title("🏠 Monthly Budget")

    aggregate, _, categories = run_async(components.snapshot())

    col1, col2, col3 = st.columns(3)
    with col1:
        st.markdown("**Total Budget**")
        st.markdown(f'<p class="big-number">{money(aggregate.total_budget)}</p>', unsafe_allow_html=True)
    with col2:
        st.markdown("**Spent**")
        st.markdown(f'<p class="big-number">{money(aggregate.spent_total)}</p>', unsafe_allow_html=True)
    with col3:
        st.markdown("**Remaining**")
        st.markdown(f'<p class="big-number">{money(aggregate.remaining)}</p>', unsafe_allow_html=True)

    if aggregate.total_budget > 0:
        st.progress(min(float(aggregate.utilization) / 100, 1.0))

    with st.expander("✏️ Edit Budget"):
        new_total = st.text_input("Total budget for this month", value=str(aggregate.total_budget))
        if st.button("Save Budget", type="primary"):
            run_async(components.budget.set_total(new_total))
            st.rerun()

    st.markdown("---")
    st.subheader("Categories")

    for category_id, category in categories.items():
        col1, col2 = st.columns([6, 1])
        with col1:
            st.markdown(
                f'<div class="category-chip" style="background-color: {category.color}">'
                f"{category.icon} {category.name}: {money(aggregate.spent_in(category_id))}</div>",
                unsafe_allow_html=True,
            )
        with col2:
            if st.button("🗑️", key=f"remove-{category_id}"):
                run_async(components.categories.remove(category_id))
                st.rerun()

    with st.expander("➕ Add Category"):
        name = st.text_input("Category name")
        icon = st.text_input("Icon (optional)", max_chars=4)
        if st.button("Add Category"):
            run_async(components.categories.add(name, icon=icon or None))
            st.rerun()


def render_expense_page(components: AppComponents):
    """Render the add-expense form."""
    st.title("➕ Add Expense")

    aggregate, _, categories = run_async(components.snapshot())
    st.markdown(f"Remaining this month: **{money(aggregate.remaining)}**")

    # One request id per form fill, reused if the user presses Save again
    if "expense_request_id" not in st.session_state:
        st.session_state.expense_request_id = None

    amount = st.text_input("Amount")
    category_id = st.selectbox(
        "Category",
        options=[None] + list(categories),
        format_func=lambda x: "Select a category" if x is None else f"{categories[x].icon} {categories[x].name}",
    )
    description = st.text_area("Description (optional)", max_chars=500)

    if st.button("💾 Save Expense", type="primary"):
        if st.session_state.expense_request_id is None:
            st.session_state.expense_request_id = str(uuid4())

        outcome = run_async(components.expenses.submit(
            amount,
            category_id,
            description,
            request_id=st.session_state.expense_request_id,
        ))
        if outcome.success:
            st.session_state.expense_request_id = None
        st.rerun()


def render_analytics_page(components: AppComponents):
    """Render spending charts for a lookback window."""
    st.title("📊 Analytics")

    window = st.radio(
        "Show the last",
        options=list(Window),
        format_func=lambda w: w.value.title(),
        horizontal=True,
    )
    report = run_async(components.analytics.report(window))

    st.markdown(f"**Total spent:** {money(report.window_total)} across {report.entry_count} expenses")

    if not report.daily:
        st.info("No expenses in this period yet.")
        return

    names = {row.category_id: row.name for row in report.categories}
    chart = {"day": [row.day.isoformat() for row in report.daily]}
    for category_id, name in names.items():
        chart[name] = [float(row.by_category.get(category_id, 0)) for row in report.daily]
    st.bar_chart(chart, x="day", y=list(names.values()))

    st.subheader("By Category")
    for row in report.categories:
        if row.total == 0:
            continue
        label = f"{row.icon} {row.name}"
        if row.is_orphan:
            label += f" ({row.category_id})"
        st.markdown(f"{label}: {money(row.total)} ({row.percentage}%)")


def render_settings_page():
    """Render the settings page."""
    st.title("⚙️ Settings")

    st.markdown("### Configuration Status")

    status = validate_all_settings()

    sections = [
        ("Ledger", "ledger"),
        ("Notifications", "notifications"),
        ("App", "app"),
        ("Google Sheets (Storage)", "google_sheets"),
    ]

    for name, key in sections:
        if key not in status:
            continue
        if status[key]:
            st.success(f"✅ {name} - OK")
        else:
            error = status.get(f"{key}_error", "Not configured")
            st.error(f"❌ {name} - {error}")

    st.markdown("---")
    st.markdown("### Configuration")
    st.markdown(
        "To configure the application, create a `.env` file. "
        "See `.env.example` for the available variables."
    )


if __name__ == "__main__":
    main()
