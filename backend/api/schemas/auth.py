# -*- coding: utf-8 -*-

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field, field_validator

from common.normalize import is_evm_address


class AuthChallengeRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    address: str = Field(..., description="EVM address (0x...)")
    chain_id: int = Field(1, alias="chainId", ge=1, description="EIP-155 chain id")

    @field_validator("address")
    @classmethod
    def check_address(cls, value: str) -> str:
        value = (value or "").strip()
        if not is_evm_address(value):
            raise ValueError("address must be a 0x-prefixed 20-byte hex string")
        return value


class AuthVerifyRequest(BaseModel):
    message: str = Field(..., min_length=1, max_length=4096, description="EIP-4361 message text")
    signature: str = Field(..., min_length=1, max_length=1024, description="personal_sign signature (0x...)")
