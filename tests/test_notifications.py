from datetime import datetime, timezone

import notifications


def _order():
    return {
        "order_number": "ORD-1700000000000",
        "customer_name": "Grace",
        "customer_email": "buyer@example.com",
        "items": [
            {"name": "Lighthouse", "size": "11x14", "quantity": 1, "price": 25.0},
            {"name": "Harbour", "size": None, "quantity": 2, "price": 10.0},
        ],
        "total_amount": 45.0,
        "shipping_address": {"street": "1 Quay", "city": "Cork", "state": "", "zip_code": "T12", "country": "IE"},
        "created_at": datetime(2024, 5, 1, tzinfo=timezone.utc),
    }


def test_confirmation_lists_items_and_address():
    msg = notifications.render_order_confirmation(_order())
    body = msg.get_content()
    assert msg["Subject"] == "Order Confirmation - ORD-1700000000000"
    assert msg["To"] == "buyer@example.com"
    assert "Lighthouse (11x14) - Quantity: 1 - $25.00" in body
    assert "Harbour - Quantity: 2 - $10.00" in body
    assert "Order Date: 2024-05-01" in body
    assert "Cork,  T12" in body


def test_send_is_skipped_without_host(monkeypatch):
    monkeypatch.setattr(notifications, "EMAIL_HOST", None)

    def fail(*args, **kwargs):
        raise AssertionError("SMTP should not be used")

    monkeypatch.setattr(notifications.smtplib, "SMTP", fail)
    notifications.send_order_confirmation(_order())


def test_send_failures_are_logged_not_raised(monkeypatch, caplog):
    monkeypatch.setattr(notifications, "EMAIL_HOST", "smtp.example.com")

    def refuse(*args, **kwargs):
        raise ConnectionRefusedError("no route")

    monkeypatch.setattr(notifications.smtplib, "SMTP", refuse)
    notifications.send_order_confirmation(_order())
    assert "Error sending confirmation for ORD-1700000000000" in caplog.text
