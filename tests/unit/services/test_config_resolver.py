"""Unit tests for layered configuration resolution."""

from datetime import datetime, timezone

import pytest

from quote_estimator.core.errors import ErrorKind
from quote_estimator.core.result_types import Err, Ok
from quote_estimator.models.llm_config import ConfigLayer, ConfigLayerName
from quote_estimator.services.config_resolver import (
    ConfigResolver,
    merge_layers,
    platform_layer,
    tenant_layer,
)


def _platform(**fields):
    base = {
        "estimator_model": "gpt-4o-mini",
        "quote_estimator_system": "Platform estimator prompt.",
        "blocked_topics": ["weapon"],
        "max_qa_questions": 5,
        "max_output_tokens": 1500,
        "guardrail_mode": "balanced",
        "pii_handling": "redact",
    }
    base.update(fields)
    return ConfigLayer(name=ConfigLayerName.PLATFORM, **base)


class TestMergeLayers:
    """Test the field-by-field reducer."""

    def test_override_fields_last_non_empty_wins(self):
        """Test tenant overrides beat industry which beats platform."""
        layers = [
            _platform(qa_model="platform-qa"),
            ConfigLayer(
                name=ConfigLayerName.INDUSTRY,
                estimator_model="industry-model",
                qa_model="industry-qa",
            ),
            ConfigLayer(name=ConfigLayerName.TENANT, estimator_model="tenant-model"),
        ]

        effective = merge_layers(layers)

        assert effective.estimator_model == "tenant-model"
        assert effective.qa_model == "industry-qa"
        assert effective.provenance["estimator_model"] is ConfigLayerName.TENANT
        assert effective.provenance["qa_model"] is ConfigLayerName.INDUSTRY

    def test_blank_values_are_absent(self):
        """Test a blank tenant prompt does not erase the platform prompt."""
        layers = [
            _platform(),
            ConfigLayer(name=ConfigLayerName.TENANT, quote_estimator_system="   "),
        ]

        effective = merge_layers(layers)

        assert effective.quote_estimator_system == "Platform estimator prompt."
        assert effective.provenance["quote_estimator_system"] is ConfigLayerName.PLATFORM

    def test_tenant_prompt_override_keeps_platform_guardrails(self):
        """Test overriding only the prompt leaves every guardrail intact."""
        layers = [
            _platform(),
            ConfigLayer(
                name=ConfigLayerName.TENANT, quote_estimator_system="Tenant prompt."
            ),
        ]

        effective = merge_layers(layers)

        assert effective.quote_estimator_system == "Tenant prompt."
        assert effective.guardrails.blocked_topics == ["weapon"]
        assert effective.guardrails.max_output_tokens == 1500
        assert effective.guardrails.mode == "balanced"

    def test_locked_fields_ignore_non_platform_layers(self):
        """Test tenants cannot replace blocked topics or PII handling."""
        layers = [
            _platform(),
            ConfigLayer(
                name=ConfigLayerName.TENANT,
                blocked_topics=[],
                pii_handling="keep",
                guardrail_mode="permissive",
            ),
        ]

        effective = merge_layers(layers)

        assert effective.guardrails.blocked_topics == ["weapon"]
        assert effective.guardrails.pii_handling == "redact"
        assert effective.guardrails.mode == "balanced"

    @pytest.mark.parametrize(
        "tenant_value,expected,source",
        [
            (2, 2, ConfigLayerName.TENANT),
            (9, 5, ConfigLayerName.PLATFORM),
        ],
    )
    def test_tighten_fields_only_lower(self, tenant_value, expected, source):
        """Test max QA questions can be lowered but never raised."""
        layers = [
            _platform(),
            ConfigLayer(name=ConfigLayerName.TENANT, max_qa_questions=tenant_value),
        ]

        effective = merge_layers(layers)

        assert effective.guardrails.max_qa_questions == expected
        assert effective.provenance["max_qa_questions"] is source

    def test_industry_addendum_only_from_industry_layer(self):
        """Test a tenant layer cannot contribute industry addenda."""
        layers = [
            _platform(),
            ConfigLayer(
                name=ConfigLayerName.INDUSTRY,
                industry_estimator_addendum="Marine wear is accelerated by salt.",
            ),
            ConfigLayer(
                name=ConfigLayerName.TENANT,
                industry_estimator_addendum="Tenant sneaking in an addendum.",
            ),
        ]

        effective = merge_layers(layers)

        assert effective.industry_estimator_addendum == "Marine wear is accelerated by salt."


class TestLayerNormalization:
    """Test raw rows become partial layers."""

    def test_platform_layer_clamps_guardrails(self):
        """Test out-of-range guardrail numbers are clamped."""
        layer = platform_layer(
            {
                "models": {"estimatorModel": "gpt-4o"},
                "prompts": {"quoteEstimatorSystem": "x"},
                "guardrails": {"maxOutputTokens": 100000, "maxQaQuestions": 0},
            }
        )

        assert layer.max_output_tokens == 4000
        assert layer.max_qa_questions == 1

    def test_platform_layer_defaults_missing_guardrails(self):
        """Test missing guardrail numbers fall back to their defaults."""
        layer = platform_layer({"models": {}, "prompts": {}, "guardrails": None})

        assert layer.max_output_tokens == 1200
        assert layer.max_qa_questions == 3
        assert layer.blocked_topics == []

    def test_tenant_layer_ignores_render_model(self):
        """Test tenants cannot choose the render model."""
        layer = tenant_layer(
            {"models": {"renderModel": "custom-image", "qaModel": "tenant-qa"}},
            {"rendering_style": "modern", "rendering_notes": "  "},
        )

        assert layer.render_model is None
        assert layer.qa_model == "tenant-qa"
        assert layer.tenant_style_key == "modern"
        assert layer.tenant_render_notes is None


class TestConfigResolver:
    """Test resolution against the store."""

    async def test_resolve_merges_all_layers(
        self, mock_db, query_router, platform_config_row, tenant_id
    ):
        """Test platform, industry pack and tenant overrides are all applied."""
        # Setup
        mock_db.fetchrow.side_effect = query_router(
            {
                "FROM platform_llm_config": platform_config_row,
                "FROM tenant_settings": {
                    "industry_key": "marine",
                    "rendering_style": "classic",
                    "rendering_notes": "Prefer OEM materials",
                    "pricing_enabled": True,
                    "ai_mode": "range",
                    "plan_tier": "pro",
                },
                "FROM industry_llm_packs": {
                    "industry_key": "auto",
                    "version": 2,
                    "pack": {
                        "models": {"qaModel": "industry-qa"},
                        "prompts": {"estimatorAddendum": "Check OEM fitment."},
                    },
                },
                "FROM tenant_llm_overrides": {
                    "models": {"estimatorModel": "gpt-4o"},
                    "prompts": {},
                    "guardrails": {"maxQaQuestions": 2},
                    "updated_at": datetime(2025, 6, 3, tzinfo=timezone.utc),
                },
            }
        )
        resolver = ConfigResolver(mock_db)

        # Execute
        result = await resolver.resolve(tenant_id, "Auto")

        # Assert
        assert isinstance(result, Ok)
        effective = result.value
        assert effective.estimator_model == "gpt-4o"
        assert effective.qa_model == "industry-qa"
        assert effective.industry_estimator_addendum == "Check OEM fitment."
        assert effective.tenant_style_key == "classic"
        assert effective.guardrails.max_qa_questions == 2
        assert effective.guardrails.blocked_topics == ["credit card", "password"]
        assert effective.meta.industry_key == "auto"
        assert effective.meta.has_industry_pack is True
        assert effective.meta.industry_pack_version == 2
        assert effective.meta.has_tenant_overrides is True
        assert effective.meta.platform_version == 4
        assert effective.meta.plan_tier == "pro"

        industry_calls = [
            call
            for call in mock_db.fetchrow.await_args_list
            if "FROM industry_llm_packs" in call.args[0]
        ]
        assert industry_calls[0].args[1] == "auto"

    async def test_resolve_without_pack_or_overrides(
        self, mock_db, query_router, platform_config_row, tenant_id
    ):
        """Test a missing industry pack and tenant override are normal."""
        mock_db.fetchrow.side_effect = query_router(
            {"FROM platform_llm_config": platform_config_row}
        )
        resolver = ConfigResolver(mock_db)

        result = await resolver.resolve(tenant_id, None)

        assert isinstance(result, Ok)
        assert result.value.meta.has_industry_pack is False
        assert result.value.meta.has_tenant_overrides is False
        assert set(result.value.provenance.values()) == {ConfigLayerName.PLATFORM}

    async def test_missing_platform_row_is_config_unavailable(self, mock_db, tenant_id):
        """Test no platform row is a fatal misconfiguration."""
        mock_db.fetchrow.return_value = None
        resolver = ConfigResolver(mock_db)

        result = await resolver.resolve(tenant_id, "auto")

        assert isinstance(result, Err)
        assert result.error.kind is ErrorKind.CONFIG_UNAVAILABLE

    async def test_platform_without_estimator_prompt_is_config_unavailable(
        self, mock_db, query_router, platform_config_row, tenant_id
    ):
        """Test a platform row lacking the estimator prompt is fatal."""
        broken = dict(platform_config_row, prompts={"quoteEstimatorSystem": "  "})
        mock_db.fetchrow.side_effect = query_router({"FROM platform_llm_config": broken})
        resolver = ConfigResolver(mock_db)

        result = await resolver.resolve(tenant_id, "auto")

        assert isinstance(result, Err)
        assert result.error.kind is ErrorKind.CONFIG_UNAVAILABLE

    async def test_resolve_reads_store_every_call(
        self, mock_db, query_router, platform_config_row, tenant_id
    ):
        """Test configuration is never cached between calls."""
        mock_db.fetchrow.side_effect = query_router(
            {"FROM platform_llm_config": platform_config_row}
        )
        resolver = ConfigResolver(mock_db)

        await resolver.resolve(tenant_id, None)
        await resolver.resolve(tenant_id, None)

        platform_reads = [
            call
            for call in mock_db.fetchrow.await_args_list
            if "FROM platform_llm_config" in call.args[0]
        ]
        assert len(platform_reads) == 2
