import pytest
from sqlalchemy import select
from sqlalchemy.exc import OperationalError

from adpilot.db.enums import CampaignStatusEnum, ProvisioningStepEnum, StepStatusEnum
from adpilot.db.models import Campaign, ProvisioningStep
from adpilot.schemas.campaigns import AdVariantInput, LaunchCampaignRequest
from adpilot.services.errors import (
    AuthError,
    InvalidStateError,
    NoViableAd,
    OwnershipError,
    PersistenceError,
    PlatformRejection,
    ProvisioningTransportError,
    ValidationError,
)
from adpilot.services.provisioning import (
    LaunchDefaults,
    ProvisioningPipeline,
    Targeting,
    build_launch_spec,
    build_targeting,
    cta_type,
    resume_spec,
)
from adpilot.services.state_recorder import StateRecorder


@pytest.fixture()
def pipeline(db_session, meta_client, launch_defaults) -> ProvisioningPipeline:
    return ProvisioningPipeline(client=meta_client, recorder=StateRecorder(db_session), defaults=launch_defaults)


def _spec(business, defaults, **fields):
    fields.setdefault("headline", "Burst pipe?")
    fields.setdefault("body", "Same-day plumber across the harbour.")
    fields.setdefault("cta", "Get Quote")
    request = LaunchCampaignRequest(business_id=business.id, **fields)
    return build_launch_spec(business=business, request=request, user_id=business.user_id, defaults=defaults)


def _three_variants():
    return [
        AdVariantInput(headline="Leaking tap?", body="Fixed today.", cta="Call Now"),
        AdVariantInput(headline="Blocked drain?", body="We clear it fast.", cta="Book Now"),
        AdVariantInput(headline="Hot water out?", body="Replacement in hours.", cta="Contact Us"),
    ]


def _only_campaign(db_session) -> Campaign:
    return db_session.scalars(select(Campaign)).one()


def test_launch_with_defaults_creates_active_campaign(pipeline, business, launch_defaults, fake_graph):
    campaign = pipeline.launch(_spec(business, launch_defaults))

    assert campaign.status == CampaignStatusEnum.active
    assert campaign.daily_budget_cents == 1500
    assert campaign.platform_campaign_id == "cmp_1"
    assert campaign.platform_adset_id == "adset_1"
    assert campaign.platform_ad_ids == ["ad_1"]
    assert campaign.warnings == []
    assert campaign.launched_at is not None

    campaign_form = fake_graph.form("campaigns")
    assert campaign_form["objective"] == "OUTCOME_LEADS"
    assert campaign_form["status"] == "PAUSED"
    assert campaign_form["special_ad_categories"] == "[]"

    adset_form = fake_graph.form("adsets")
    assert adset_form["daily_budget"] == "1500"
    assert adset_form["billing_event"] == "IMPRESSIONS"
    assert adset_form["optimization_goal"] == "LEAD_GENERATION"
    assert adset_form["campaign_id"] == "cmp_1"
    targeting = fake_graph.json_param("adsets", "targeting")
    circle = targeting["geo_locations"]["custom_locations"][0]
    assert circle["radius"] == 25
    assert circle["distance_unit"] == "kilometer"
    assert (circle["latitude"], circle["longitude"]) == (-33.8688, 151.2093)
    assert (targeting["age_min"], targeting["age_max"]) == (25, 65)
    assert targeting["publisher_platforms"] == ["facebook", "instagram"]


def test_creative_uses_story_spec_and_cta_mapping(pipeline, business, launch_defaults, fake_graph):
    pipeline.launch(_spec(business, launch_defaults, image_url="https://cdn.test/pipe.jpg"))

    story = fake_graph.json_param("adcreatives", "object_story_spec")
    assert story["page_id"] == "page_1"
    link_data = story["link_data"]
    assert link_data["name"] == "Burst pipe?"
    assert link_data["message"] == "Same-day plumber across the harbour."
    assert link_data["link"] == "https://harbourplumbing.test/"
    assert link_data["picture"] == "https://cdn.test/pipe.jpg"
    assert link_data["call_to_action"]["type"] == "GET_QUOTE"

    assert fake_graph.json_param("ads", "creative") == {"creative_id": "creative_1"}
    assert fake_graph.form("ads")["status"] == "PAUSED"


def test_activation_runs_children_before_parents(pipeline, business, launch_defaults, fake_graph):
    pipeline.launch(_spec(business, launch_defaults))

    activations = fake_graph.of_kind("status")
    assert [path for path, _ in activations] == ["/v21.0/ad_1", "/v21.0/adset_1", "/v21.0/cmp_1"]
    assert all(form["status"] == "ACTIVE" for _, form in activations)


def test_partial_variant_failures_still_launch(pipeline, business, launch_defaults, fake_graph):
    fake_graph.rejections["adcreatives"] = {2}
    # Variant 3 makes the second ad call because variant 2 never got a creative.
    fake_graph.rejections["ads"] = {2}

    campaign = pipeline.launch(_spec(business, launch_defaults, variants=_three_variants()))

    assert campaign.status == CampaignStatusEnum.active
    assert campaign.platform_ad_ids == ["ad_1"]
    assert [(w["variant_index"], w["step"]) for w in campaign.warnings] == [(1, "creative"), (2, "ad")]
    assert campaign.warnings[1]["creative_id"] == "creative_3"
    assert [path for path, _ in fake_graph.of_kind("status")][0] == "/v21.0/ad_1"


def test_variant_transport_failure_counts_as_variant_failure(pipeline, business, launch_defaults, fake_graph):
    fake_graph.transport_errors["adcreatives"] = {1}

    campaign = pipeline.launch(
        _spec(business, launch_defaults, variants=_three_variants()[:2])
    )

    assert campaign.status == CampaignStatusEnum.active
    assert campaign.platform_ad_ids == ["ad_1"]
    assert "connection reset" in campaign.warnings[0]["error"]


def test_no_viable_ad_activates_nothing(pipeline, business, launch_defaults, fake_graph, db_session):
    fake_graph.rejections["adcreatives"] = {1, 2}

    with pytest.raises(NoViableAd) as exc_info:
        pipeline.launch(_spec(business, launch_defaults, variants=_three_variants()[:2]))

    assert exc_info.value.status_code == 502
    assert exc_info.value.step == "ads"
    assert len(exc_info.value.details["failures"]) == 2
    assert fake_graph.of_kind("status") == []

    campaign = _only_campaign(db_session)
    assert campaign.status == CampaignStatusEnum.error
    assert campaign.failed_step == "ads"
    assert campaign.platform_campaign_id == "cmp_1"


def test_adset_failure_discloses_orphaned_campaign(pipeline, business, launch_defaults, fake_graph, db_session):
    fake_graph.rejections["adsets"] = {1}

    with pytest.raises(PlatformRejection) as exc_info:
        pipeline.launch(_spec(business, launch_defaults))

    body = exc_info.value.to_body()
    assert exc_info.value.status_code == 502
    assert body["step"] == "adset"
    assert body["error"] == "adsets rejected"
    assert body["meta_error"]["code"] == 100
    assert body["remote_ids"]["platform_campaign_id"] == "cmp_1"
    assert fake_graph.of_kind("adcreatives") == []

    campaign = _only_campaign(db_session)
    assert campaign.status == CampaignStatusEnum.error
    assert campaign.failed_step == "adset"
    assert campaign.platform_campaign_id == "cmp_1"


def test_campaign_step_failure_leaves_no_external_state(pipeline, business, launch_defaults, fake_graph, db_session):
    fake_graph.rejections["campaigns"] = {1}

    with pytest.raises(PlatformRejection) as exc_info:
        pipeline.launch(_spec(business, launch_defaults))

    assert exc_info.value.step == "campaign"
    assert fake_graph.of_kind("adsets") == []
    campaign = _only_campaign(db_session)
    assert campaign.failed_step == "campaign"
    assert campaign.platform_campaign_id is None


def test_transport_failure_maps_to_provisioning_transport_error(pipeline, business, launch_defaults, fake_graph, db_session):
    fake_graph.transport_errors["campaigns"] = {1}

    with pytest.raises(ProvisioningTransportError) as exc_info:
        pipeline.launch(_spec(business, launch_defaults))

    assert exc_info.value.status_code == 502
    assert exc_info.value.step == "campaign"
    assert _only_campaign(db_session).status == CampaignStatusEnum.error


def test_resume_reuses_recorded_ids(pipeline, business, launch_defaults, fake_graph, db_session):
    fake_graph.rejections["adsets"] = {1}
    with pytest.raises(PlatformRejection):
        pipeline.launch(_spec(business, launch_defaults, daily_budget_cents=2500))

    campaign = _only_campaign(db_session)
    campaign = pipeline.launch(
        resume_spec(business=business, campaign=campaign, user_id=business.user_id), campaign=campaign
    )

    assert campaign.status == CampaignStatusEnum.active
    assert len(fake_graph.of_kind("campaigns")) == 1
    assert campaign.platform_campaign_id == "cmp_1"
    assert campaign.platform_adset_id == "adset_2"
    assert campaign.failed_step is None
    assert fake_graph.form("adsets", 1)["daily_budget"] == "2500"
    assert fake_graph.json_param("adsets", "targeting", 1) == fake_graph.json_param("adsets", "targeting", 0)


def test_resume_of_active_campaign_is_rejected(pipeline, business, launch_defaults):
    campaign = pipeline.launch(_spec(business, launch_defaults))

    with pytest.raises(InvalidStateError):
        pipeline.launch(
            resume_spec(business=business, campaign=campaign, user_id=business.user_id), campaign=campaign
        )


def test_external_ids_are_write_once(pipeline, business, launch_defaults, db_session):
    campaign = pipeline.launch(_spec(business, launch_defaults))

    with pytest.raises(PersistenceError):
        StateRecorder(db_session).record_external_id(campaign, ProvisioningStepEnum.campaign, "cmp_other")

    db_session.refresh(campaign)
    assert campaign.platform_campaign_id == "cmp_1"


def test_step_log_records_each_created_object(pipeline, business, launch_defaults, db_session):
    campaign = pipeline.launch(_spec(business, launch_defaults))

    steps = db_session.scalars(
        select(ProvisioningStep).where(ProvisioningStep.campaign_id == campaign.id).order_by(ProvisioningStep.seq)
    ).all()
    succeeded = [(s.step, s.external_id) for s in steps if s.status == StepStatusEnum.succeeded]
    assert succeeded == [
        ("campaign", "cmp_1"),
        ("adset", "adset_1"),
        ("ad", "ad_1"),
        ("activate_ads", "ad_1"),
        ("activate_adset", "adset_1"),
        ("activate_campaign", "cmp_1"),
    ]
    assert [s.seq for s in steps] == list(range(1, len(steps) + 1))


def _steps(db_session, campaign_id: str) -> list[tuple[str, StepStatusEnum]]:
    rows = db_session.scalars(
        select(ProvisioningStep).where(ProvisioningStep.campaign_id == campaign_id).order_by(ProvisioningStep.seq)
    ).all()
    return [(row.step, row.status) for row in rows]


def test_ad_activation_rejected_never_goes_active(pipeline, business, launch_defaults, fake_graph, db_session):
    fake_graph.rejections["status"] = {1}

    with pytest.raises(PlatformRejection) as exc_info:
        pipeline.launch(_spec(business, launch_defaults))

    assert exc_info.value.status_code == 502
    assert exc_info.value.step == "activate_ads"
    assert [path for path, _ in fake_graph.of_kind("status")] == ["/v21.0/ad_1"]

    campaign = _only_campaign(db_session)
    assert campaign.status == CampaignStatusEnum.error
    assert campaign.failed_step == "activate_ads"
    assert campaign.platform_ad_ids == ["ad_1"]
    assert ("activate_ads", StepStatusEnum.succeeded) not in _steps(db_session, campaign.id)


def test_adset_activation_rejected_leaves_campaign_paused(
    pipeline, business, launch_defaults, fake_graph, db_session
):
    fake_graph.rejections["status"] = {2}

    with pytest.raises(PlatformRejection) as exc_info:
        pipeline.launch(_spec(business, launch_defaults))

    assert exc_info.value.step == "activate_adset"
    assert exc_info.value.details["remote_ids"]["platform_adset_id"] == "adset_1"
    # The campaign object itself is never switched on.
    assert [path for path, _ in fake_graph.of_kind("status")] == ["/v21.0/ad_1", "/v21.0/adset_1"]

    campaign = _only_campaign(db_session)
    assert campaign.status == CampaignStatusEnum.error
    assert campaign.failed_step == "activate_adset"
    steps = _steps(db_session, campaign.id)
    assert ("activate_ads", StepStatusEnum.succeeded) in steps
    assert steps[-1] == ("activate_adset", StepStatusEnum.failed)


def test_campaign_activation_rejected(pipeline, business, launch_defaults, fake_graph, db_session):
    fake_graph.rejections["status"] = {3}

    with pytest.raises(PlatformRejection) as exc_info:
        pipeline.launch(_spec(business, launch_defaults))

    assert exc_info.value.step == "activate_campaign"
    campaign = _only_campaign(db_session)
    assert campaign.status == CampaignStatusEnum.error
    assert ("activate_adset", StepStatusEnum.succeeded) in _steps(db_session, campaign.id)


def test_persistence_failure_discloses_remote_ids(pipeline, business, launch_defaults, monkeypatch):
    repo = pipeline.recorder.repo
    original_commit = repo.commit

    def flaky_commit(campaign):
        if campaign.platform_adset_id:
            raise OperationalError("UPDATE campaigns", {}, Exception("database is locked"))
        return original_commit(campaign)

    monkeypatch.setattr(repo, "commit", flaky_commit)

    with pytest.raises(PersistenceError) as exc_info:
        pipeline.launch(_spec(business, launch_defaults))

    assert exc_info.value.status_code == 500
    assert exc_info.value.step == "persist"
    remote = exc_info.value.details["remote_ids"]
    assert remote["platform_campaign_id"] == "cmp_1"
    assert remote["platform_adset_id"] == "adset_1"


def test_launch_spec_requires_ownership(business, launch_defaults):
    request = LaunchCampaignRequest(business_id=business.id, headline="h", body="b", cta="Learn More")
    with pytest.raises(OwnershipError):
        build_launch_spec(business=business, request=request, user_id="someone-else", defaults=launch_defaults)


def test_launch_spec_requires_credentials(business, launch_defaults, db_session):
    business.facebook_access_token = None
    db_session.commit()

    with pytest.raises(AuthError) as exc_info:
        _spec(business, launch_defaults)
    assert exc_info.value.to_body()["reconnect_required"] is True

    business.facebook_access_token = "token"
    business.facebook_page_id = None
    db_session.commit()
    with pytest.raises(ValidationError):
        _spec(business, launch_defaults)


def test_launch_spec_rejects_non_positive_budget(business, launch_defaults):
    with pytest.raises(ValidationError):
        _spec(business, launch_defaults, daily_budget_cents=0)


def test_targeting_falls_back_to_countries():
    defaults = LaunchDefaults()

    by_country = build_targeting(Targeting(countries=["AU"]), defaults)
    assert by_country["geo_locations"] == {"countries": ["AU"]}

    # A radius without coordinates cannot describe a circle.
    fallback = build_targeting(Targeting(radius_km=25), defaults)
    assert fallback["geo_locations"] == {"countries": ["US"]}


def test_cta_labels_map_to_platform_types():
    assert cta_type("Get Quote") == "GET_QUOTE"
    assert cta_type("Call Now") == "CALL_NOW"
    assert cta_type("Sign Up") == "SIGN_UP"
    assert cta_type("Book Now") == "BOOK_NOW"
    assert cta_type("Contact Us") == "CONTACT_US"
    assert cta_type("Shop Now") == "LEARN_MORE"
    assert cta_type(None) == "LEARN_MORE"
