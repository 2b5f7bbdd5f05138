"""REST client for the clinic API."""

from consult_os.client.http import ClinicApiClient

__all__ = ["ClinicApiClient"]
