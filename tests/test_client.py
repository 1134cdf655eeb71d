from unittest import mock

import pytest
import requests

from po_translate_openai import OpenAIClient, TranslationError


def make_response(status_code=200, payload=None, text=""):
    response = mock.Mock()
    response.status_code = status_code
    response.text = text
    response.json.return_value = payload
    return response


@pytest.fixture
def client():
    return OpenAIClient(api_key="sk-test", model="gpt-4o-mini", timeout=5)


def test_translate_posts_chat_completion(client):
    payload = {"choices": [{"message": {"content": " Gato \n"}}]}
    with mock.patch("po_translate_openai.requests.post", return_value=make_response(payload=payload)) as post:
        assert client.translate("Cat", "es") == "Gato"

    args, kwargs = post.call_args
    assert args[0] == "https://api.openai.com/v1/chat/completions"
    assert kwargs["headers"]["Authorization"] == "Bearer sk-test"
    assert kwargs["timeout"] == 5
    body = kwargs["json"]
    assert body["model"] == "gpt-4o-mini"
    assert body["messages"][0]["role"] == "system"
    assert "es" in body["messages"][0]["content"]
    assert body["messages"][1] == {"role": "user", "content": "Cat"}


def test_custom_base_url():
    client = OpenAIClient(api_key="k", base_url="http://localhost:8080/v1/")
    payload = {"choices": [{"message": {"content": "Gato"}}]}
    with mock.patch("po_translate_openai.requests.post", return_value=make_response(payload=payload)) as post:
        client.translate("Cat", "es")
    assert post.call_args[0][0] == "http://localhost:8080/v1/chat/completions"


def test_http_error_status(client):
    response = make_response(status_code=401, text="invalid api key")
    with mock.patch("po_translate_openai.requests.post", return_value=response):
        with pytest.raises(TranslationError, match="401"):
            client.translate("Cat", "es")


def test_no_choices(client):
    with mock.patch("po_translate_openai.requests.post", return_value=make_response(payload={"choices": []})):
        with pytest.raises(TranslationError, match="no translation"):
            client.translate("Cat", "es")


def test_invalid_json(client):
    response = make_response()
    response.json.side_effect = ValueError("Expecting value")
    with mock.patch("po_translate_openai.requests.post", return_value=response):
        with pytest.raises(TranslationError, match="invalid JSON"):
            client.translate("Cat", "es")


def test_connection_error(client):
    with mock.patch("po_translate_openai.requests.post", side_effect=requests.ConnectionError("refused")):
        with pytest.raises(TranslationError, match="refused"):
            client.translate("Cat", "es")
