# File: order_watch/portal/selectors.py
# Portal markup has drifted between versions; recalibrate here, not in callers.

# Login
LOGIN_EMAIL_MODE_BUTTON = 'button:has-text("メールアドレス")'
LOGIN_EMAIL_FORM_TEXT = r"^メールアドレスパスワード$"
LOGIN_EMAIL_INPUT = 'input[type="email"]'
LOGIN_PASSWORD_INPUT = 'input[type="password"]'
LOGIN_SUBMIT = 'button:has-text("ログイン")'
LOGIN_ERROR_TEXT = "text=/Error|Invalid|失敗/i"
LOGIN_PATH_HINT = "/login"

# Order list
ORDER_TABLE = ".Table_table__RdwIW"
ORDER_TABLE_ROWS = "tbody tr"
ORDER_GRID = "[role=grid]"
ORDER_GRID_ROWS = "[role=row]"
ORDER_GRID_CELLS = "[role=gridcell], [role=cell], [role=columnheader], [role=rowheader]"
NO_ORDERS_TEXT = "text=/注文がありません|No orders found/"
NO_ORDERS_PHRASES = ("注文がありません", "No orders found")
ORDER_LIST_READY = f"{ORDER_TABLE}, table:has-text('注文ID'), table:has-text('Order ID'), {ORDER_GRID}"

# Column header phrases, by column meaning
HEADER_ID_PHRASES = ("注文ID", "注文番号", "Order ID")
HEADER_TIME_PHRASES = ("注文日時", "Order time", "Ordered at")
HEADER_STATUS_PHRASES = ("ステータス", "状態", "Status")
HEADER_PHRASES = HEADER_ID_PHRASES + HEADER_TIME_PHRASES + HEADER_STATUS_PHRASES

# Order detail
DETAIL_READY = "dl"
DETAIL_ID_LABEL = "注文ID"

LABEL_ORDER_ID = "注文ID"
LABEL_ORDER_TIME = "注文日時"
LABEL_DELIVERY_TIME = "配達/テイクアウト日時"
LABEL_DELIVERY_TIME_FALLBACK = "配達希望日時"
LABEL_PAYMENT_METHOD = "支払方法"
LABEL_VISIT_COUNT = "店舗利用回数"
LABEL_CUSTOMER_NAME = "注文者氏名"
LABEL_CUSTOMER_PHONE = "注文者電話番号"
LABEL_RECEIPT_NAME = "領収書宛名"
LABEL_WAITING_TIME = "受付時の待ち時間"
LABEL_ADDRESS = "配達先住所"
LABEL_TOTAL = "合計"
LABEL_REMARKS = "備考"
ITEMS_SECTION_LABELS = ("商品情報", "注文商品")

ORDER_ITEMS_TABLE = "table.orderItemList"
UTENSILS_PHRASE = "箸、スプーン、おしぼり等／Utensils"
UTENSILS_PHRASE_VARIANTS = (UTENSILS_PHRASE, "箸、スプーン、おしぼり等", "Utensils")
