import os
from typing import Dict, List, Optional

import requests
from dotenv import load_dotenv
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
    RetryError,
)

from context_manager.context import context_user_data
from logger import logger

from utils.exception_handler import ExternalServiceError

load_dotenv()


DELHIVERY_API_URL = os.environ.get("DELHIVERY_API_URL", "https://track.delhivery.com")
DELHIVERY_API_TOKEN = os.environ.get("DELHIVERY_API_TOKEN", "")
DELHIVERY_TIMEOUT_SECONDS = float(os.environ.get("DELHIVERY_TIMEOUT_SECONDS", "30"))
DELHIVERY_MAX_RETRIES = int(os.environ.get("DELHIVERY_MAX_RETRIES", "3"))

# transient failures, anything else is surfaced on the first attempt
RETRYABLE_EXCEPTIONS = (requests.Timeout, requests.ConnectionError)


class Delhivery:
    """
    Client for the Delhivery endpoints the NDR workflow needs.

    Every call carries an explicit timeout. Timeouts and connection errors are
    retried with exponential backoff; once the attempts are used up, or on any
    error answer from the carrier, ExternalServiceError is raised.
    """

    # API URL'S
    track_order_path = "/api/v1/packages/json/"

    ndr_action_path = "/api/p/update"

    ndr_status_path = "/api/cmu/get_bulk_upl/{correlation_id}"

    edit_order_path = "/api/backend/clientwarehouse/editorders/"

    def __init__(
        self,
        base_url: str = DELHIVERY_API_URL,
        token: str = DELHIVERY_API_TOKEN,
        timeout: float = DELHIVERY_TIMEOUT_SECONDS,
        max_retries: int = DELHIVERY_MAX_RETRIES,
        backoff_multiplier: float = 1.0,
        session: Optional[requests.Session] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.token = token
        self.timeout = timeout
        self.max_retries = max(1, max_retries)
        self.backoff_multiplier = backoff_multiplier
        self.session = session or requests.Session()

    @property
    def headers(self) -> Dict[str, str]:
        return {
            "Content-Type": "application/json",
            "Accept": "application/json",
            "Authorization": "Token " + self.token,
        }

    def _send(self, method: str, path: str, **kwargs) -> requests.Response:
        return self.session.request(
            method,
            self.base_url + path,
            headers=self.headers,
            timeout=self.timeout,
            **kwargs,
        )

    def _request(self, operation: str, method: str, path: str, **kwargs) -> dict:
        retrying = retry(
            stop=stop_after_attempt(self.max_retries),
            wait=wait_exponential(multiplier=self.backoff_multiplier, max=10),
            retry=retry_if_exception_type(RETRYABLE_EXCEPTIONS),
            reraise=False,
        )(self._send)

        try:
            response = retrying(method, path, **kwargs)
        except RetryError as e:
            cause = e.last_attempt.exception()
            logger.error(
                extra=context_user_data.get(),
                msg="Delhivery {} failed after {} attempts: {}".format(
                    operation, self.max_retries, cause
                ),
            )
            raise ExternalServiceError(
                "Carrier did not respond to {}, please try again".format(operation),
                data={"operation": operation},
                retryable=True,
            )
        except requests.RequestException as e:
            logger.error(
                extra=context_user_data.get(),
                msg="Delhivery {} request error: {}".format(operation, e),
            )
            raise ExternalServiceError(
                "Carrier request for {} failed".format(operation),
                data={"operation": operation},
            )

        try:
            response_data = response.json()
        except ValueError as e:
            logger.error(
                extra=context_user_data.get(),
                msg="Delhivery {} failed to parse JSON response: {}".format(
                    operation, e
                ),
            )
            raise ExternalServiceError(
                "Carrier sent an unreadable response for {}".format(operation),
                data={"operation": operation, "http_status": response.status_code},
            )

        if response.status_code >= 400:
            logger.error(
                extra=context_user_data.get(),
                msg="Delhivery {} returned {}: {}".format(
                    operation, response.status_code, response_data
                ),
            )
            raise ExternalServiceError(
                _error_message(response_data)
                or "Carrier rejected {}".format(operation),
                data={"operation": operation, "http_status": response.status_code},
                retryable=response.status_code >= 500,
            )

        return response_data

    # ============================================
    # TRACKING
    # ============================================

    def track_shipment(self, waybill: str) -> dict:
        response_data = self._request(
            "track_shipment",
            "GET",
            self.track_order_path,
            params={"waybill": waybill, "ref_ids": ""},
        )

        shipments = response_data.get("ShipmentData") or []
        if not shipments:
            raise ExternalServiceError(
                "Carrier has no tracking data for {}".format(waybill),
                data={"waybill": waybill},
            )

        shipment = shipments[0].get("Shipment", {})
        status = shipment.get("Status", {})
        scans = [
            {
                "date": scan.get("ScanDetail", {}).get("ScanDateTime"),
                "location": scan.get("ScanDetail", {}).get("ScannedLocation"),
                "status": scan.get("ScanDetail", {}).get("Scan"),
                "instructions": scan.get("ScanDetail", {}).get("Instructions"),
            }
            for scan in shipment.get("Scans", [])
        ]
        return {"status": status.get("Status"), "scans": scans}

    # ============================================
    # NDR ACTIONS
    # ============================================

    def take_ndr_action(self, waybill: str, action: str, reason: Optional[str] = None) -> dict:
        logger.info(
            extra=context_user_data.get(),
            msg="Delhivery NDR action {} for {} ({})".format(action, waybill, reason),
        )

        response_data = self._request(
            "take_ndr_action",
            "POST",
            self.ndr_action_path,
            json={"data": [{"waybill": waybill, "act": action}]},
        )
        return self._ndr_request_result(response_data, "take_ndr_action")

    def bulk_ndr_action(self, waybills: List[str], action: str) -> dict:
        logger.info(
            extra=context_user_data.get(),
            msg="Delhivery bulk NDR action {} for {} waybills".format(
                action, len(waybills)
            ),
        )

        response_data = self._request(
            "bulk_ndr_action",
            "POST",
            self.ndr_action_path,
            json={"data": [{"waybill": waybill, "act": action} for waybill in waybills]},
        )
        result = self._ndr_request_result(response_data, "bulk_ndr_action")
        result["processed_count"] = len(waybills)
        return result

    def get_ndr_status(self, correlation_id: str) -> dict:
        response_data = self._request(
            "get_ndr_status",
            "GET",
            self.ndr_status_path.format(correlation_id=correlation_id),
            params={"verbose": "true"},
        )
        waybills = [
            item.get("waybill") if isinstance(item, dict) else str(item)
            for item in response_data.get("waybills") or []
        ]
        return {
            "status": response_data.get("status"),
            "waybills": [waybill for waybill in waybills if waybill],
        }

    def initiate_rto(self, waybill: str, reason: str) -> dict:
        response_data = self._request(
            "initiate_rto",
            "POST",
            self.edit_order_path,
            json={"waybill": waybill, "return_type": "RTO", "return_reason": reason},
        )
        if response_data.get("status") is False or response_data.get("success") is False:
            raise ExternalServiceError(
                _error_message(response_data) or "Carrier refused RTO for {}".format(waybill),
                data={"waybill": waybill},
            )
        return {
            "success": True,
            "message": response_data.get("rmk") or "RTO initiated successfully",
        }

    @staticmethod
    def _ndr_request_result(response_data: dict, operation: str) -> dict:
        request_id = response_data.get("request_id")
        if response_data.get("status") == "Failure" or not request_id:
            raise ExternalServiceError(
                _error_message(response_data)
                or "Carrier did not accept {}".format(operation),
                data={"operation": operation},
            )
        return {"success": True, "request_id": str(request_id)}


def _error_message(response_data) -> Optional[str]:
    if not isinstance(response_data, dict):
        return None
    for key in ("message", "error", "rmk"):
        if response_data.get(key):
            return str(response_data[key])
    return None


delhivery_client = Delhivery()
