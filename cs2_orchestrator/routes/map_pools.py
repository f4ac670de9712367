from flask import Blueprint, jsonify, current_app

from . import json_body
from ..auth import require_admin_for_writes

bp = Blueprint('map_pools', __name__, url_prefix='/api/map-pools')
bp.before_request(require_admin_for_writes)


@bp.route('', methods=['GET'])
def list_pools():
    pools = current_app.map_pools.list_pools()
    return jsonify({'success': True, 'mapPools': [p.to_dict() for p in pools]})


@bp.route('', methods=['POST'])
def create_pool():
    pool = current_app.map_pools.create_pool(json_body())
    return jsonify({'success': True, 'mapPool': pool.to_dict()}), 201


@bp.route('/<int:pool_id>', methods=['GET'])
def get_pool(pool_id: int):
    return jsonify({'success': True, 'mapPool': current_app.map_pools.get_pool(pool_id).to_dict()})


@bp.route('/<int:pool_id>', methods=['PUT'])
def update_pool(pool_id: int):
    pool = current_app.map_pools.update_pool(pool_id, json_body())
    return jsonify({'success': True, 'mapPool': pool.to_dict()})


@bp.route('/<int:pool_id>', methods=['DELETE'])
def delete_pool(pool_id: int):
    current_app.map_pools.delete_pool(pool_id)
    return jsonify({'success': True, 'message': 'Map pool deleted'})
