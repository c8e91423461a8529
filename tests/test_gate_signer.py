import hashlib
import hmac

from trading.gate_signer import EMPTY_BODY_HASH, GateSigner, canonical_query, compact_json

SECRET = "test-secret"
PREFIX = "/api/v4/futures/usdt"


def _expected(sign_string: str) -> str:
    return hmac.new(SECRET.encode(), sign_string.encode(), hashlib.sha512).hexdigest()


def make_signer(ts=1700000000.7):
    return GateSigner("test-key", SECRET, path_prefix=PREFIX, clock=lambda: ts)


def test_empty_body_hash_is_sha512_of_empty_string():
    assert EMPTY_BODY_HASH == hashlib.sha512(b"").hexdigest()
    assert EMPTY_BODY_HASH != ""


def test_canonical_query_sorts_and_encodes():
    assert canonical_query({"limit": 10, "contract": "BTC_USDT"}) == "contract=BTC_USDT&limit=10"
    assert canonical_query({"b": "x y", "a": True}) == "a=true&b=x+y"
    assert canonical_query(None) == ""


def test_get_signature_matches_independent_hmac():
    headers = make_signer().sign("GET", "/my_trades", {"limit": 5, "contract": "ETH_USDT"})

    sign_string = "\n".join(
        ["GET", PREFIX + "/my_trades", "contract=ETH_USDT&limit=5", hashlib.sha512(b"").hexdigest(), "1700000000"]
    )
    assert headers["SIGN"] == _expected(sign_string)
    assert headers["KEY"] == "test-key"
    assert headers["Timestamp"] == "1700000000"
    assert headers["Content-Type"] == "application/json"
    assert headers["Accept"] == "application/json"


def test_post_signature_hashes_body_and_ignores_query():
    body = compact_json({"contract": "BTC_USDT", "size": 10, "price": "0"})
    headers = make_signer().sign("POST", "/orders", {"ignored": 1}, body)

    sign_string = "\n".join(
        ["POST", PREFIX + "/orders", "", hashlib.sha512(body.encode()).hexdigest(), "1700000000"]
    )
    assert headers["SIGN"] == _expected(sign_string)


def test_delete_uses_empty_body_hash_even_with_body():
    signer = make_signer()
    msg = signer.sign_string("DELETE", "/orders", {"contract": "BTC_USDT"}, '{"x":1}', "1")
    assert msg.split("\n")[3] == EMPTY_BODY_HASH
    assert msg.split("\n")[2] == "contract=BTC_USDT"


def test_compact_json_has_no_spaces():
    assert compact_json({"a": 1, "b": [1, 2]}) == '{"a":1,"b":[1,2]}'
