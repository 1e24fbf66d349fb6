from __future__ import annotations
import streamlit as st

from upp_core.config import load_settings
from upp_core.data import ALLOWED_CATEGORIES, RentalInventoryService
from upp_core.errors import safe_execute
from upp_core.logging import setup_logging
from upp_core.offline import OfflineContext, OfflineService
from upp_core.ui import render_offline_indicator

# ============================================================================
# PAGE CONFIGURATION
# ============================================================================
st.set_page_config(
    page_title="UPP - Rental Inventory",
    page_icon="🖨️",
    layout="wide",
)


@st.cache_resource
def get_offline_context() -> OfflineContext:
    """One offline context per server process; its threads outlive reruns."""
    setup_logging()
    context = OfflineContext.create(load_settings())
    context.start()
    return context


context = get_offline_context()

if "offline_service" not in st.session_state:
    st.session_state.offline_service = OfflineService(context)
service: OfflineService = st.session_state.offline_service
rentals = RentalInventoryService(service)

render_offline_indicator(service, show_queue=True)

# ============================================================================
# RENTAL INVENTORY
# ============================================================================
st.title("Rental Inventory")

listing = safe_execute(rentals.list_items, default=None, error_message="Could not load rental inventory")
if listing is not None and listing.error:
    st.warning(f"{listing.error} Showing offline data.")
elif listing is not None and listing.metadata.get("stale"):
    st.caption("Inventory has not been refreshed recently.")

items = (listing.data or []) if listing is not None else []
if items:
    st.dataframe(
        [item.to_dict() for item in items],
        use_container_width=True,
        hide_index=True,
        column_order=["category", "item_name", "total", "working", "faulty", "inactive", "updated_at"],
    )
else:
    st.info("No rental items yet.")

with st.form("add_rental_item", clear_on_submit=True):
    st.subheader("Add item")
    col1, col2 = st.columns(2)
    category = col1.selectbox("Category", ALLOWED_CATEGORIES, index=ALLOWED_CATEGORIES.index("Tables"))
    item_name = col2.text_input("Item name")
    c1, c2, c3, c4 = st.columns(4)
    total = c1.number_input("Total", min_value=0, step=1)
    working = c2.number_input("Working", min_value=0, step=1)
    faulty = c3.number_input("Faulty", min_value=0, step=1)
    inactive = c4.number_input("Inactive", min_value=0, step=1)

    if st.form_submit_button("Save"):
        result = rentals.create_item(category, item_name, total, working, faulty, inactive)
        if not result:
            st.error(result.error)
        elif result.metadata.get("queued"):
            st.info(result.error)
        else:
            st.success(f"Added {result.data.item_name}")

if items:
    with st.expander("Remove item"):
        choice = st.selectbox(
            "Item",
            items,
            format_func=lambda item: f"{item.category} / {item.item_name}",
        )
        if st.button("Delete", type="secondary"):
            result = rentals.delete_item(choice.id)
            if not result:
                st.error(result.error)
            else:
                st.rerun()
