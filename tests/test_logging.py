import logging
import uuid


def _messages(caplog):
    return [record.getMessage() for record in caplog.records]


class TestRequestContextMiddleware:
    def test_returns_provided_request_id(self, client):
        custom_id = "my-custom-request-id-123"
        response = client.get("/health", HTTP_X_REQUEST_ID=custom_id)
        assert response["X-Request-ID"] == custom_id

    def test_generates_uuid_when_no_request_id(self, client):
        response = client.get("/health")
        request_id = response["X-Request-ID"]
        parsed = uuid.UUID(request_id, version=4)
        assert str(parsed) == request_id

    def test_correlation_id_in_logs(self, client, caplog):
        custom_id = "log-test-correlation-456"
        with caplog.at_level(logging.INFO):
            client.get("/health", HTTP_X_REQUEST_ID=custom_id)
        assert any(custom_id in message for message in _messages(caplog)), _messages(caplog)

    def test_idempotency_key_in_logs(self, buyer_client, caplog):
        with caplog.at_level(logging.INFO):
            buyer_client.post("/api/v1/orders/cart-checkout/", HTTP_IDEMPOTENCY_KEY="chk-789")
        finished = [m for m in _messages(caplog) if "request_finished" in m]
        assert finished
        assert "chk-789" in finished[-1]


class TestSensitiveDataMasking:
    def test_signature_key_masked_in_log_output(self):
        from config.settings import mask_sensitive_data

        event_dict = {"event": "test", "signature": "9f8e7d6c5b4a"}
        result = mask_sensitive_data(None, None, event_dict)
        assert result["signature"] == "***MASKED***"

    def test_key_secret_masked_in_log_output(self):
        from config.settings import mask_sensitive_data

        event_dict = {"event": "test", "data": "key_secret=live_abc987"}
        result = mask_sensitive_data(None, None, event_dict)
        assert "live_abc987" not in result["data"]
        assert "***MASKED***" in result["data"]

    def test_password_masked_in_log_output(self):
        from config.settings import mask_sensitive_data

        event_dict = {"event": "test", "data": "password='s3cret123'"}
        result = mask_sensitive_data(None, None, event_dict)
        assert "s3cret123" not in result["data"]
        assert "***MASKED***" in result["data"]

    def test_token_masked_in_log_output(self):
        from config.settings import mask_sensitive_data

        event_dict = {"event": "test", "header": "token=abc123xyz"}
        result = mask_sensitive_data(None, None, event_dict)
        assert "abc123xyz" not in result["header"]
        assert "***MASKED***" in result["header"]

    def test_non_sensitive_data_unchanged(self):
        from config.settings import mask_sensitive_data

        event_dict = {"event": "order_created", "order_id": "ORD-001"}
        result = mask_sensitive_data(None, None, event_dict)
        assert result["order_id"] == "ORD-001"
        assert result["event"] == "order_created"
