"""
Unit tests for EloTemplateService.
Tests: ensure_default, create/update/delete, resolve_for_tournament, calculate_adjustment
"""
import pytest
from cs2_orchestrator.elo_templates import EloTemplateService, DEFAULT_TEMPLATE_ID, slugify
from cs2_orchestrator.errors import ValidationError, ConflictError, NotFoundError
from cs2_orchestrator.models import db, EloTemplate


@pytest.fixture
def service():
    return EloTemplateService()


class TestDefaultTemplate:
    """The default pure win/loss template always exists and cannot change."""

    def test_default_exists(self, app, db_session, service):
        template = service.get_template(DEFAULT_TEMPLATE_ID)
        assert template is not None
        assert template.name == 'Pure Win/Loss'
        assert all(w == 0 for w in template.weights.values())

    def test_ensure_default_reenables(self, app, db_session, service):
        template = service.get_template(DEFAULT_TEMPLATE_ID)
        template.enabled = False
        db.session.commit()
        assert service.ensure_default().enabled is True

    def test_cannot_update_default(self, app, db_session, service):
        with pytest.raises(ValidationError):
            service.update_template(DEFAULT_TEMPLATE_ID, {'name': 'Changed'})

    def test_cannot_delete_default(self, app, db_session, service):
        with pytest.raises(ValidationError):
            service.delete_template(DEFAULT_TEMPLATE_ID)
        assert service.get_template(DEFAULT_TEMPLATE_ID) is not None


class TestTemplateCrud:
    def test_create_slugifies_name(self, app, db_session, service):
        template = service.create_template({'name': 'Frag Heavy!', 'weights': {'kills': 1.5}})
        assert template.id == 'frag-heavy'
        assert template.weights == {'kills': 1.5}

    def test_duplicate_id(self, app, db_session, service):
        service.create_template({'name': 'Frag Heavy'})
        with pytest.raises(ConflictError) as exc:
            service.create_template({'name': 'Frag Heavy'})
        assert "Template with ID 'frag-heavy' already exists" == exc.value.message

    def test_unknown_weight_rejected(self, app, db_session, service):
        with pytest.raises(ValidationError):
            service.create_template({'name': 'Odd', 'weights': {'jumps': 1}})

    def test_min_above_max_rejected(self, app, db_session, service):
        with pytest.raises(ValidationError):
            service.create_template({'name': 'Odd', 'minAdjustment': 10, 'maxAdjustment': -10})

    def test_update_and_delete(self, app, db_session, service):
        service.create_template({'name': 'Support'})
        updated = service.update_template('support', {'weights': {'assists': 2}})
        assert updated.weights == {'assists': 2}
        service.delete_template('support')
        assert EloTemplate.query.get('support') is None

    def test_missing_template(self, app, db_session, service):
        with pytest.raises(NotFoundError):
            service.require_template('nope')

    def test_resolve_falls_back_to_default(self, app, db_session, service):
        assert service.resolve_for_tournament(None).id == DEFAULT_TEMPLATE_ID
        assert service.resolve_for_tournament('missing').id == DEFAULT_TEMPLATE_ID

    def test_resolve_does_not_write(self, app, db_session, service):
        """Resolving with no default row returns None instead of creating one."""
        db.session.delete(service.get_template(DEFAULT_TEMPLATE_ID))
        db.session.commit()
        assert service.resolve_for_tournament(None) is None
        assert db.session.get(EloTemplate, DEFAULT_TEMPLATE_ID) is None
        assert service.calculate_adjustment(None, {'kills': 30}) == 0

    def test_slugify(self):
        assert slugify('  Pure Win/Loss ') == 'pure-win-loss'


class TestCalculateAdjustment:
    """Tests for the weighted stat adjustment."""

    def template(self, **kwargs):
        return EloTemplate(id='t', name='t', enabled=True, weights=kwargs.pop('weights', {}), **kwargs)

    def test_weighted_sum(self):
        template = self.template(weights={'kills': 1, 'deaths': -1})
        assert EloTemplateService.calculate_adjustment(template, {'kills': 20, 'deaths': 15}) == 5

    def test_adr_from_damage_and_rounds(self):
        template = self.template(weights={'adr': 0.1})
        stats = {'damage': 2400, 'roundsPlayed': 24}
        assert EloTemplateService.calculate_adjustment(template, stats) == 10

    def test_clamped(self):
        template = self.template(weights={'kills': 5}, max_adjustment=20, min_adjustment=-20)
        assert EloTemplateService.calculate_adjustment(template, {'kills': 30}) == 20

    def test_no_stats(self):
        template = self.template(weights={'kills': 5})
        assert EloTemplateService.calculate_adjustment(template, None) == 0

    def test_zero_rounds_adr(self):
        template = self.template(weights={'adr': 1})
        assert EloTemplateService.calculate_adjustment(template, {'damage': 500, 'roundsPlayed': 0}) == 0
