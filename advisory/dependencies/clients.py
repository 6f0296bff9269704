from fastapi import Request

from advisory.services.digio_client import DigioClient
from advisory.services.razorpay_client import RazorpayClient


def get_settings(request: Request):
    return request.app.state.settings


def get_razorpay_client(request: Request) -> RazorpayClient:
    return request.app.state.razorpay


def get_digio_client(request: Request) -> DigioClient:
    return request.app.state.digio
