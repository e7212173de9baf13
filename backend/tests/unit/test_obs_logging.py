import json
import logging

from app.obs import logging as obs_logging


def _record(**extra):
	record = logging.LogRecord("metabento.test", logging.INFO, __file__, 10, "hello %s", ("world",), None)
	for key, value in extra.items():
		setattr(record, key, value)
	return record


def test_formatter_redacts_sensitive_fields():
	formatter = obs_logging.JSONLogFormatter()
	payload = json.loads(
		formatter.format(_record(password="hunter22", access_token="abc", target_user_id="u-1", amount=15))
	)

	assert payload["msg"] == "hello world"
	assert payload["password"] == "[redacted]"
	assert payload["access_token"] == "[redacted]"
	assert payload["target_user_id"] == "u-1"
	assert payload["amount"] == 15


def test_formatter_includes_bound_request_context():
	formatter = obs_logging.JSONLogFormatter()
	tokens = obs_logging.bind_context(request_id="req-42", route="/points/leaderboard", client_ip="10.0.0.9")
	try:
		payload = json.loads(formatter.format(_record()))
	finally:
		obs_logging.reset_context(tokens)

	assert payload["request_id"] == "req-42"
	assert payload["route"] == "/points/leaderboard"
	assert payload["ip"] == "10.0.0.9"
	assert "request_id" not in json.loads(formatter.format(_record()))


def test_long_values_are_truncated():
	formatter = obs_logging.JSONLogFormatter()
	payload = json.loads(formatter.format(_record(description="x" * 1000)))
	assert len(payload["description"]) < 300
