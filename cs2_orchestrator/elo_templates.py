import re
import logging
from typing import List, Optional

from .elo_calculator import round_half_up
from .errors import ValidationError, ConflictError, NotFoundError
from .models import db, EloTemplate

logger = logging.getLogger(__name__)

DEFAULT_TEMPLATE_ID = 'pure-win-loss'

WEIGHT_KEYS = [
    'kills', 'deaths', 'assists', 'flashAssists', 'headshotKills', 'damage',
    'utilityDamage', 'kast', 'mvps', 'score', 'adr',
]


def slugify(name: str) -> str:
    slug = name.lower().strip()
    slug = re.sub(r'[^a-z0-9\s-]', '', slug)
    slug = re.sub(r'\s+', '-', slug)
    slug = re.sub(r'-+', '-', slug)
    return slug.strip('-')


def _is_number(value) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


class EloTemplateService:
    """CRUD for ELO calculation templates and the per-player stat adjustment."""

    def ensure_default(self) -> EloTemplate:
        template = db.session.get(EloTemplate, DEFAULT_TEMPLATE_ID)
        if template is None:
            template = EloTemplate(
                id=DEFAULT_TEMPLATE_ID,
                name='Pure Win/Loss',
                description='Only team result affects ELO. No stat adjustments. This is the default template.',
                enabled=True,
                weights={key: 0 for key in WEIGHT_KEYS},
            )
            db.session.add(template)
            db.session.commit()
            logger.info('Created default "Pure Win/Loss" template')
        elif not template.enabled:
            template.enabled = True
            db.session.commit()
            logger.info('Re-enabled default "Pure Win/Loss" template')
        return template

    def list_templates(self) -> List[EloTemplate]:
        self.ensure_default()
        return EloTemplate.query.order_by(EloTemplate.created_at, EloTemplate.id).all()

    def get_template(self, template_id: str) -> Optional[EloTemplate]:
        if not template_id:
            return None
        return db.session.get(EloTemplate, template_id)

    def require_template(self, template_id: str) -> EloTemplate:
        template = self.get_template(template_id)
        if template is None:
            raise NotFoundError(f"Template '{template_id}' not found")
        return template

    def _validate(self, data: dict, partial: bool = False):
        if not partial or 'name' in data:
            name = data.get('name')
            if not isinstance(name, str) or not name.strip():
                raise ValidationError('Template name is required')
        weights = data.get('weights')
        if weights is not None:
            if not isinstance(weights, dict):
                raise ValidationError('weights must be an object')
            for key, value in weights.items():
                if key not in WEIGHT_KEYS:
                    raise ValidationError(f"Unknown weight '{key}'")
                if not _is_number(value):
                    raise ValidationError(f"Weight '{key}' must be a number")
        for field in ('maxAdjustment', 'minAdjustment'):
            value = data.get(field)
            if value is not None and not _is_number(value):
                raise ValidationError(f'{field} must be a number or null')
        low, high = data.get('minAdjustment'), data.get('maxAdjustment')
        if _is_number(low) and _is_number(high) and low > high:
            raise ValidationError('minAdjustment cannot be greater than maxAdjustment')

    def create_template(self, data: dict) -> EloTemplate:
        self._validate(data)
        template_id = data.get('id') or slugify(data['name'])
        if not template_id:
            raise ValidationError('Template name must contain letters or digits')
        if self.get_template(template_id) is not None:
            raise ConflictError(f"Template with ID '{template_id}' already exists")

        template = EloTemplate(
            id=template_id,
            name=data['name'].strip(),
            description=data.get('description'),
            enabled=bool(data.get('enabled', True)),
            weights=dict(data.get('weights') or {}),
            max_adjustment=data.get('maxAdjustment'),
            min_adjustment=data.get('minAdjustment'),
        )
        db.session.add(template)
        db.session.commit()
        logger.info(f"Created ELO template {template_id}")
        return template

    def update_template(self, template_id: str, data: dict) -> EloTemplate:
        if template_id == DEFAULT_TEMPLATE_ID:
            raise ValidationError('Cannot modify the default template')
        template = self.require_template(template_id)
        self._validate(data, partial=True)

        if 'name' in data:
            template.name = data['name'].strip()
        if 'description' in data:
            template.description = data['description']
        if 'enabled' in data:
            template.enabled = bool(data['enabled'])
        if 'weights' in data:
            template.weights = dict(data['weights'] or {})
        if 'maxAdjustment' in data:
            template.max_adjustment = data['maxAdjustment']
        if 'minAdjustment' in data:
            template.min_adjustment = data['minAdjustment']
        db.session.commit()
        return template

    def delete_template(self, template_id: str):
        if template_id == DEFAULT_TEMPLATE_ID:
            raise ValidationError('Cannot delete the default template')
        template = self.require_template(template_id)
        db.session.delete(template)
        db.session.commit()
        logger.info(f"Deleted ELO template {template_id}")

    def resolve_for_tournament(self, template_id: Optional[str]) -> Optional[EloTemplate]:
        """Template used for a tournament; falls back to the default. Read-only."""
        template = self.get_template(template_id)
        if template is None or not template.enabled:
            return self.get_template(DEFAULT_TEMPLATE_ID)
        return template

    @staticmethod
    def calculate_adjustment(template: Optional[EloTemplate], stats: Optional[dict]) -> int:
        """Weighted stat adjustment for one player, clamped and rounded."""
        if template is None or not template.enabled or not stats:
            return 0

        weights = template.weights or {}
        rounds_played = stats.get('roundsPlayed') or 0
        adr = stats.get('damage', 0) / rounds_played if rounds_played > 0 else 0

        adjustment = 0.0
        for key, weight in weights.items():
            if key == 'adr':
                adjustment += adr * weight
            else:
                adjustment += (stats.get(key) or 0) * weight

        if template.min_adjustment is not None:
            adjustment = max(template.min_adjustment, adjustment)
        if template.max_adjustment is not None:
            adjustment = min(template.max_adjustment, adjustment)
        return round_half_up(adjustment)
