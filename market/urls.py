from django.urls import path

from market import views

urlpatterns = [
    path("customers/", views.customers_api, name="customers-api"),
    path(
        "customers/<int:customer_id>/",
        views.customer_detail_api,
        name="customer-detail-api",
    ),
    path("products/", views.products_api, name="products-api"),
    path(
        "products/<int:product_id>/",
        views.product_detail_api,
        name="product-detail-api",
    ),
    path(
        "products/<int:product_id>/price/",
        views.product_price_api,
        name="product-price-api",
    ),
    path(
        "products/<int:product_id>/sales/",
        views.product_sales_api,
        name="product-sales-api",
    ),
    path("orders/", views.orders_api, name="orders-api"),
    path("reports/orders/", views.order_report_api, name="order-report-api"),
    path("reports/sales/", views.sales_report_api, name="sales-report-api"),
    path("reports/stock/", views.stock_report_api, name="stock-report-api"),
]
