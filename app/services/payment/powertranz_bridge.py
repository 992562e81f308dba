"""
PowerTranz 3-D Secure Bridge
The bank posts the 3DS outcome to our MerchantResponseUrl inside the
checkout iframe. We answer with a small page that hands the result to the
parent window via postMessage. The bridge never touches orders; the
storefront confirms with the SpiToken afterwards.
"""
import os
import json
from typing import Dict, Any, Optional
from urllib.parse import urlencode, urlsplit
from dotenv import load_dotenv

load_dotenv()

FRONTEND_URL = os.getenv("FRONTEND_URL", "http://localhost:3000")

BRIDGE_MESSAGE_TYPE = "POWERTRANZ_3DS_RESULT"


def storefront_origin() -> str:
    """scheme://host[:port] of FRONTEND_URL, the only window allowed to read the bridge message"""
    parts = urlsplit(FRONTEND_URL)
    return f"{parts.scheme}://{parts.netloc}"


def parse_3ds_payload(data: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    """
    Normalize the bank callback body.
    PowerTranz may wrap the real payload as a JSON string in a "Response" field.
    """
    payload = dict(data or {})
    wrapped = payload.get("Response")

    if isinstance(wrapped, dict):
        return wrapped
    if isinstance(wrapped, str) and wrapped.strip():
        try:
            inner = json.loads(wrapped)
        except ValueError:
            print("[WARN] PowerTranz 3DS Response field is not valid JSON")
            return payload
        if isinstance(inner, dict):
            return inner

    return payload


def _embed(value: Any) -> str:
    """JSON-encode a value for use inside a <script> block"""
    return json.dumps(value).replace("</", "<\\/")


def bridge_message(result: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "type": BRIDGE_MESSAGE_TYPE,
        "success": bool(result.get("success")),
        "spiToken": result.get("spi_token"),
        "isoResponseCode": result.get("iso_response_code"),
        "responseMessage": result.get("response_message"),
        "orderId": result.get("order_id"),
    }


def render_3ds_bridge(result: Dict[str, Any]) -> str:
    """
    HTML page posting the classified 3DS result to window.parent.
    The message is sent once on load and again after 100ms.
    """
    message = _embed(bridge_message(result))
    target_origin = _embed(storefront_origin())
    title = "Authentication complete" if result.get("success") else "Authentication failed"

    return f"""<!DOCTYPE html>
<html>
<head>
<meta charset="utf-8">
<title>{title}</title>
</head>
<body>
<p>{title}. You can close this window.</p>
<script>
(function () {{
  var message = {message};
  function send() {{
    try {{
      (window.parent || window.opener).postMessage(message, {target_origin});
    }} catch (e) {{}}
  }}
  send();
  setTimeout(send, 100);
}})();
</script>
</body>
</html>
"""


def checkout_result_url(status: str, order_id: Optional[str] = None, message: Optional[str] = None,
                        transaction_id: Optional[str] = None) -> str:
    """Storefront page the HPP flow returns the browser to"""
    params = {"status": status, "provider": "powertranz"}
    if order_id:
        params["orderId"] = order_id
    if transaction_id:
        params["transactionId"] = transaction_id
    if message:
        params["message"] = message
    return f"{FRONTEND_URL.rstrip('/')}/checkout/result?{urlencode(params)}"
