import logging
from typing import List

from .errors import ValidationError, ConflictError, NotFoundError
from .models import db, MapPool

logger = logging.getLogger(__name__)

ACTIVE_DUTY_MAPS = ['de_ancient', 'de_anubis', 'de_dust2', 'de_inferno', 'de_mirage', 'de_nuke', 'de_train']


class MapPoolService:
    def ensure_default(self) -> MapPool:
        pool = MapPool.query.filter_by(is_default=True).first()
        if pool is None:
            pool = MapPool(name='Active Duty', map_ids=list(ACTIVE_DUTY_MAPS), is_default=True)
            db.session.add(pool)
            db.session.commit()
            logger.info('Created default "Active Duty" map pool')
        return pool

    def list_pools(self) -> List[MapPool]:
        self.ensure_default()
        return MapPool.query.order_by(MapPool.is_default.desc(), MapPool.name).all()

    def get_pool(self, pool_id: int) -> MapPool:
        pool = db.session.get(MapPool, pool_id)
        if pool is None:
            raise NotFoundError(f"Map pool {pool_id} not found")
        return pool

    def _validate_maps(self, map_ids) -> List[str]:
        if not isinstance(map_ids, list) or not all(isinstance(m, str) and m.strip() for m in map_ids):
            raise ValidationError('mapIds must be a list of map names')
        if not map_ids:
            raise ValidationError('A map pool needs at least one map')
        cleaned = [m.strip() for m in map_ids]
        if len(set(cleaned)) != len(cleaned):
            raise ValidationError('mapIds must not contain duplicates')
        return cleaned

    def _ensure_unique_name(self, name: str, exclude_id: int = None):
        query = MapPool.query.filter_by(name=name)
        if exclude_id is not None:
            query = query.filter(MapPool.id != exclude_id)
        if query.first() is not None:
            raise ConflictError(f"Map pool '{name}' already exists")

    def _make_default(self, pool: MapPool):
        MapPool.query.filter(MapPool.is_default.is_(True), MapPool.id != pool.id).update(
            {MapPool.is_default: False}, synchronize_session='fetch'
        )
        pool.is_default = True

    def create_pool(self, data: dict) -> MapPool:
        name = data.get('name')
        if not isinstance(name, str) or not name.strip():
            raise ValidationError('Map pool name is required')
        name = name.strip()
        self._ensure_unique_name(name)
        pool = MapPool(name=name, map_ids=self._validate_maps(data.get('mapIds')),
                       enabled=bool(data.get('enabled', True)))
        db.session.add(pool)
        db.session.flush()
        if data.get('isDefault'):
            self._make_default(pool)
        db.session.commit()
        logger.info(f"Created map pool '{name}' with {len(pool.map_ids)} maps")
        return pool

    def update_pool(self, pool_id: int, data: dict) -> MapPool:
        pool = self.get_pool(pool_id)
        if 'name' in data:
            name = data['name']
            if not isinstance(name, str) or not name.strip():
                raise ValidationError('Map pool name is required')
            self._ensure_unique_name(name.strip(), exclude_id=pool.id)
            pool.name = name.strip()
        if 'mapIds' in data:
            pool.map_ids = self._validate_maps(data['mapIds'])
        if 'enabled' in data:
            pool.enabled = bool(data['enabled'])
        if data.get('isDefault'):
            self._make_default(pool)
        db.session.commit()
        return pool

    def delete_pool(self, pool_id: int):
        pool = self.get_pool(pool_id)
        if pool.is_default:
            raise ValidationError('The default map pool cannot be deleted')
        db.session.delete(pool)
        db.session.commit()
        logger.info(f"Deleted map pool {pool_id}")
