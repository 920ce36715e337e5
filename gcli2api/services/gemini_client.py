#!/usr/bin/env python
# -*- coding: utf-8 -*-

"""
Code Assist 上游客户端 - 用户开通（onboarding）与内容生成
"""

import asyncio
import time
from typing import Any, Dict, Optional, Set

import httpx
import orjson

from ..config import settings, get_client_metadata, get_user_agent
from ..credential_manager import CredentialRecord
from ..errors import OnboardingError, OnboardingTimeoutError, UpstreamError
from ..helpers import debug_log, error_log, info_log, request_stage_log
from ..schemas import GeminiRequest, GeminiResponse
from .network_manager import NetworkManager
from .response_parser import ResponseParser


LEGACY_TIER = {
    "name": "",
    "description": "",
    "id": "legacy-tier",
    "userDefinedCloudaicompanionProject": True,
}


def select_tier(load_data: Dict[str, Any]) -> Dict[str, Any]:
    """选择 isDefault 的可用套餐，没有时回落到 legacy-tier"""
    allowed_tiers = load_data.get("allowedTiers")
    if isinstance(allowed_tiers, list):
        for tier in allowed_tiers:
            if isinstance(tier, dict) and tier.get("isDefault") is True:
                return tier
    return LEGACY_TIER


class GeminiClient:
    """Code Assist v1internal 接口封装"""

    def __init__(
            self,
            network: NetworkManager,
            endpoint: Optional[str] = None,
            poll_interval: Optional[float] = None,
            max_poll_attempts: Optional[int] = None,
    ):
        self.network = network
        self.endpoint = (endpoint or settings.CODE_ASSIST_ENDPOINT).rstrip("/")
        self.poll_interval = settings.ONBOARD_POLL_INTERVAL if poll_interval is None else poll_interval
        if max_poll_attempts is None:
            max_poll_attempts = settings.ONBOARD_MAX_ATTEMPTS
        self.max_poll_attempts = max(1, max_poll_attempts)
        self.response_parser = ResponseParser()
        # 已完成开通的项目
        self._onboarded: Set[str] = set()

    def _headers(self, record: CredentialRecord) -> Dict[str, str]:
        if not record.access_token:
            raise UpstreamError("No access token available", status_code=401)
        return {
            "Authorization": f"Bearer {record.access_token}",
            "Content-Type": "application/json",
            "User-Agent": get_user_agent(),
        }

    def _url(self, method: str) -> str:
        return f"{self.endpoint}/v1internal:{method}"

    async def _post_json(self, method: str, record: CredentialRecord, payload: Dict[str, Any]) -> Dict[str, Any]:
        client = await self.network.get_client()
        response = await client.post(
            self._url(method),
            content=orjson.dumps(payload),
            headers=self._headers(record),
        )
        if response.status_code < 200 or response.status_code >= 300:
            error_log(
                "上游返回错误",
                method=method,
                status_code=response.status_code,
                error_detail=response.text[:200],
            )
            raise OnboardingError(
                f"{method} failed with status: {response.status_code}",
                status_code=response.status_code,
                body=response.text,
            )
        try:
            return orjson.loads(response.content)
        except orjson.JSONDecodeError as e:
            raise OnboardingError(f"Failed to parse {method} response: {e}", body=response.text) from e

    # ------------------------------------------------------------------
    # Onboarding
    # ------------------------------------------------------------------

    async def ensure_onboarded(self, record: CredentialRecord) -> None:
        project_id = record.project_id
        if not project_id or project_id in self._onboarded:
            return

        metadata = get_client_metadata(project_id)
        load_data = await self._post_json(
            "loadCodeAssist",
            record,
            {"cloudaicompanionProject": project_id, "metadata": metadata},
        )
        if load_data.get("currentTier"):
            debug_log("[ONBOARD] 用户已开通", project=project_id)
            self._onboarded.add(project_id)
            return

        tier = select_tier(load_data)
        payload = {
            "tierId": tier.get("id"),
            "cloudaicompanionProject": project_id,
            "metadata": metadata,
        }
        info_log("[ONBOARD] 开始开通用户", project=project_id, tier=tier.get("id"))

        for attempt in range(1, self.max_poll_attempts + 1):
            lro = await self._post_json("onboardUser", record, payload)
            if lro.get("done") is True:
                info_log("[ONBOARD] 用户开通完成", project=project_id, attempts=attempt)
                self._onboarded.add(project_id)
                return
            debug_log("[ONBOARD] 开通进行中", project=project_id, attempt=attempt)
            if attempt < self.max_poll_attempts:
                await asyncio.sleep(self.poll_interval)

        raise OnboardingTimeoutError(
            f"Onboarding for project {project_id} did not finish after {self.max_poll_attempts} attempts",
            status_code=504,
        )

    # ------------------------------------------------------------------
    # generateContent / streamGenerateContent
    # ------------------------------------------------------------------

    def _build_payload(self, model: str, project_id: str, request: GeminiRequest) -> Dict[str, Any]:
        payload = {
            "model": model,
            "project": project_id,
            "request": request.to_wire(),
        }
        if settings.DEBUG_API:
            debug_log("上游请求体", payload=orjson.dumps(payload).decode("utf-8")[:2000])
        return payload

    async def generate_content(
            self,
            record: CredentialRecord,
            model: str,
            request: GeminiRequest,
    ) -> GeminiResponse:
        payload = self._build_payload(model, record.project_id, request)
        client = await self.network.get_client()

        request_stage_log("upstream_request", "向上游发起非流式请求", model=model, credential=record.credential_id)
        start = time.perf_counter()
        response = await client.post(
            self._url("generateContent"),
            content=orjson.dumps(payload),
            headers=self._headers(record),
        )
        debug_log("⏱️ 上游响应时间", elapsed_ms=f"{(time.perf_counter() - start) * 1000:.2f}ms")

        if response.status_code != 200:
            error_log(
                "上游返回错误",
                status_code=response.status_code,
                error_detail=response.text[:200],
            )
            raise UpstreamError(
                f"Upstream error: {response.status_code}",
                status_code=response.status_code,
                body=response.text,
            )

        try:
            data = orjson.loads(response.content)
        except orjson.JSONDecodeError as e:
            raise UpstreamError(f"Failed to parse upstream response: {e}", body=response.text) from e
        return self.response_parser.parse_response(data)

    async def open_stream(
            self,
            record: CredentialRecord,
            model: str,
            request: GeminiRequest,
    ) -> httpx.Response:
        """发起流式请求并检查状态码；调用方负责关闭返回的响应"""
        payload = self._build_payload(model, record.project_id, request)
        client = await self.network.get_client()

        request_stage_log("upstream_request", "向上游发起流式请求", model=model, credential=record.credential_id)
        upstream_request = client.build_request(
            "POST",
            self._url("streamGenerateContent"),
            params={"alt": "sse"},
            content=orjson.dumps(payload),
            headers=self._headers(record),
        )
        start = time.perf_counter()
        response = await client.send(upstream_request, stream=True)
        debug_log("⏱️ 上游TTFB (首字节时间)", ttfb_ms=f"{(time.perf_counter() - start) * 1000:.2f}ms")

        if response.status_code != 200:
            try:
                body = (await response.aread()).decode("utf-8", errors="ignore")
            finally:
                await response.aclose()
            error_log("上游返回错误", status_code=response.status_code, error_detail=body[:200])
            raise UpstreamError(
                f"Upstream error: {response.status_code}",
                status_code=response.status_code,
                body=body,
            )
        return response
