"""
REST API client for Compute Engine (v1 API).
"""

import logging
import time
from typing import Dict, List, Optional

import google.auth
from google.auth.exceptions import DefaultCredentialsError, TransportError
from google.auth.transport.requests import AuthorizedSession

from exceptions import ProviderAPIError

logger = logging.getLogger(__name__)

API_BASE = "https://compute.googleapis.com/compute/v1"
COMPUTE_SCOPE = "https://www.googleapis.com/auth/compute"


class ComputeRestClient:
    """REST client for the Compute Engine v1 API, bound to one project/zone."""

    RETRYABLE_STATUS_CODES = {429, 500, 502, 503, 504}

    def __init__(
        self,
        project_id: str,
        zone: str,
        timeout_s: int = 60,
        max_retries: int = 5,
        base_delay: float = 5.0,
        credential_retries: int = 10,
        credential_backoff: float = 6.0,
    ):
        """
        Initialize the Compute REST client.

        Args:
            project_id: GCP project instances are launched into
            zone: Zone instances are launched into
            timeout_s: Request timeout in seconds
            max_retries: Maximum number of retries for transient errors
            base_delay: Base delay for exponential backoff
            credential_retries: Attempts at obtaining default credentials
            credential_backoff: Fixed delay between credential attempts
        """
        self.project_id = project_id
        self.zone = zone
        self.timeout_s = timeout_s
        self.max_retries = max_retries
        self.base_delay = base_delay
        self.credential_retries = credential_retries
        self.credential_backoff = credential_backoff

        self.session = self._authorized_session()

    def _authorized_session(self) -> AuthorizedSession:
        """
        Build an authorized session from application default credentials.

        Getting credentials on CI workers is flaky, so this is retried with a
        fixed backoff.

        Raises:
            ProviderAPIError: If credentials could not be obtained
        """
        last_error = None
        for attempt in range(self.credential_retries):
            if attempt > 0:
                time.sleep(self.credential_backoff)
            try:
                creds, _ = google.auth.default(scopes=[COMPUTE_SCOPE])
                return AuthorizedSession(creds)
            except (DefaultCredentialsError, TransportError) as e:
                logger.warning(
                    f"Obtaining credentials failed, attempt {attempt + 1}/{self.credential_retries}: {e}"
                )
                last_error = e

        raise ProviderAPIError(
            "Unable to create gcloud compute service using defaults. "
            f"Make sure you are authenticated. {last_error}"
        )

    def _url(self, path: str) -> str:
        """Construct full API URL from path."""
        return f"{API_BASE}/{path.lstrip('/')}"

    def _zonal(self, path: str) -> str:
        return self._url(f"projects/{self.project_id}/zones/{self.zone}/{path}")

    def _request_with_retry(self, method: str, url: str, **kwargs) -> dict:
        """
        Execute HTTP request with exponential backoff retry for transient errors.

        Args:
            method: HTTP method (GET, POST, DELETE)
            url: Request URL
            **kwargs: Additional request parameters

        Returns:
            Dictionary with 'response' and 'status_code' keys

        Raises:
            ProviderAPIError: If max retries exceeded
        """
        if method.upper() not in ("GET", "POST", "DELETE"):
            raise ValueError(f"Unsupported method: {method}")
        send = getattr(self.session, method.lower())
        last_error = None

        for attempt in range(self.max_retries + 1):
            try:
                resp = send(url, timeout=self.timeout_s, **kwargs)

                if resp.status_code in self.RETRYABLE_STATUS_CODES:
                    delay = self._calculate_delay(attempt, resp)
                    error_info = self._error_message(resp)
                    logger.warning(
                        f"Retryable error {resp.status_code} ({error_info}), attempt {attempt + 1}/{self.max_retries + 1}, waiting {delay:.1f}s..."
                    )
                    last_error = (
                        f"HTTP {resp.status_code}: {error_info or resp.text[:200]}"
                    )
                    time.sleep(delay)
                    continue

                return {"response": resp, "status_code": resp.status_code}

            except Exception as e:
                delay = self._calculate_delay(attempt)
                logger.warning(
                    f"Request error: {e}, attempt {attempt + 1}/{self.max_retries + 1}, waiting {delay:.1f}s..."
                )
                last_error = str(e)
                time.sleep(delay)

        raise ProviderAPIError(f"Max retries exceeded. Last error: {last_error}")

    @staticmethod
    def _error_message(resp) -> str:
        try:
            return resp.json().get("error", {}).get("message", "")
        except ValueError:
            return ""

    def _calculate_delay(self, attempt: int, resp=None) -> float:
        """
        Calculate delay with exponential backoff and jitter.

        Args:
            attempt: Current attempt number
            resp: Optional response object (to check Retry-After header)

        Returns:
            Delay in seconds
        """
        if resp is not None and "Retry-After" in resp.headers:
            try:
                return float(resp.headers["Retry-After"])
            except ValueError:
                pass

        delay = self.base_delay * (2**attempt)
        jitter = delay * 0.2 * (0.5 - time.time() % 1)
        return min(delay + jitter, 180.0)

    def _json_or_raise(self, method: str, url: str, what: str, ok=(200,), **kwargs) -> Dict:
        result = self._request_with_retry(method, url, **kwargs)
        resp = result["response"]
        if resp.status_code not in ok:
            raise ProviderAPIError(
                f"{what} failed ({resp.status_code}): {resp.text}",
                status_code=resp.status_code,
            )
        return resp.json()

    def list_images(self, project: str) -> List[Dict]:
        """
        List all images visible in a project, following pagination.

        Args:
            project: Project owning the images (e.g. 'cos-cloud')

        Returns:
            List of image resources (name, family, creationTimestamp, ...)

        Raises:
            ProviderAPIError: If API call fails
        """
        url = self._url(f"projects/{project}/global/images")

        images: List[Dict] = []
        page_token: Optional[str] = None

        while True:
            params = {}
            if page_token:
                params["pageToken"] = page_token

            data = self._json_or_raise(
                "GET", url, f"List images in project {project!r}", params=params
            )
            images.extend(data.get("items", []))

            page_token = data.get("nextPageToken")
            if not page_token:
                break

        return images

    def get_instance(self, name: str) -> Dict:
        """
        Get details of an instance in the configured zone.

        Raises:
            ProviderAPIError: If API call fails (status_code 404 if missing)
        """
        return self._json_or_raise(
            "GET", self._zonal(f"instances/{name}"), f"Get instance {name}"
        )

    def insert_instance(self, body: Dict) -> Dict:
        """
        Submit an instance creation request.

        Args:
            body: Instance resource (see InstanceRequest.to_body)

        Returns:
            Operation resource

        Raises:
            ProviderAPIError: If the request is rejected
        """
        return self._json_or_raise(
            "POST",
            self._zonal("instances"),
            f"Insert instance {body.get('name')}",
            ok=(200, 202),
            json=body,
        )

    def get_operation(self, op_name: str) -> Dict:
        """
        Get status of a zone operation.

        Raises:
            ProviderAPIError: If API call fails
        """
        return self._json_or_raise(
            "GET", self._zonal(f"operations/{op_name}"), f"Get operation {op_name}"
        )

    def get_serial_port_output(self, name: str, port: int = 1) -> str:
        """
        Fetch the serial console contents of an instance.

        Raises:
            ProviderAPIError: If API call fails
        """
        data = self._json_or_raise(
            "GET",
            self._zonal(f"instances/{name}/serialPort"),
            f"Get serial port output of {name}",
            params={"port": port},
        )
        return data.get("contents", "")

    def delete_instance(self, name: str) -> Dict:
        """
        Initiate deletion of an instance.

        Returns:
            Operation resource

        Raises:
            ProviderAPIError: If API call fails
        """
        return self._json_or_raise(
            "DELETE",
            self._zonal(f"instances/{name}"),
            f"Delete instance {name}",
            ok=(200, 202),
        )

    def get_project_default_service_account(self, project: Optional[str] = None) -> str:
        """
        Look up the default compute service account of a project.

        Raises:
            ProviderAPIError: If API call fails
        """
        project = project or self.project_id
        data = self._json_or_raise(
            "GET", self._url(f"projects/{project}"), f"Get project info {project!r}"
        )
        return data.get("defaultServiceAccount", "")
