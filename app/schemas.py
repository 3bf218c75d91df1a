"""Pydantic schemas for the HTTP API and live channel."""

from __future__ import annotations

from datetime import datetime
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field


class SensorReadingCreate(BaseModel):
    """Reading candidate before the store assigns an id and timestamp."""

    model_config = ConfigDict(populate_by_name=True)

    dht_temperature: Optional[float] = Field(default=None, alias="dhtTemperature")
    lm35_temperature: Optional[float] = Field(default=None, alias="lm35Temperature")
    led_level: int = Field(default=0, ge=0, alias="ledLevel")


class SensorReading(BaseModel):
    """One stored temperature and LED observation."""

    model_config = ConfigDict(populate_by_name=True)

    id: int = Field(..., ge=1)
    dht_temperature: Optional[float] = Field(default=None, alias="dhtTemperature")
    lm35_temperature: Optional[float] = Field(default=None, alias="lm35Temperature")
    led_level: int = Field(default=0, ge=0, alias="ledLevel")
    timestamp: datetime = Field(..., description="Assigned by the store at creation.")


class UserCreate(BaseModel):
    username: str = Field(..., min_length=1)
    password: str


class User(BaseModel):
    id: int = Field(..., ge=1)
    username: str
    password: str


class ErrorResponse(BaseModel):
    error: str


class ConnectionStatusEnvelope(BaseModel):
    """Sent once to every new live connection."""

    type: Literal["connection_status"] = "connection_status"
    status: Literal["connected"] = "connected"


class SensorDataEnvelope(BaseModel):
    """Carries a stored reading over the live channel."""

    type: Literal["sensor_data"] = "sensor_data"
    data: SensorReading

    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True)


class HealthStatus(BaseModel):
    status: str = "ok"
    mqtt_connected: bool
    live_clients: int = Field(..., ge=0)
    messages_received: int = Field(..., ge=0)
    readings_stored: int = Field(..., ge=0)
    messages_rejected: int = Field(..., ge=0)
