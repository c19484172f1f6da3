"""Shipping exceptions."""

from __future__ import annotations


class CarrierUnavailable(Exception):
    """The carrier API could not be reached or answered with an error."""


class ShipmentNotCreated(Exception):
    """The carrier refused to create a shipment or assign an AWB."""


class CarrierSyncSoftFailure(Exception):
    """A tracking sync attempt failed; cached order data stays authoritative.

    Never propagated to the API: the reconciler records it on the order and
    reports ``syncFailed`` instead.
    """
