from flask import Blueprint, request, jsonify
from flask_jwt_extended import jwt_required

from errors import ValidationError
from models import Task, TASK_STATUSES
import task_workflow
from utils import current_actor, get_json_body, parse_choice

tasks_bp = Blueprint('tasks', __name__)


@tasks_bp.route('/api/tasks', methods=['POST'])
@jwt_required()
def create_task():
    actor = current_actor()
    task = task_workflow.create_task(actor, get_json_body(request))
    return jsonify({'message': 'Task created.', 'task': task.to_dict()}), 201


@tasks_bp.route('/api/tasks', methods=['GET'])
@jwt_required()
def list_tasks():
    """ Filters: ?volunteer=<id>&status=open&donation=<id> """
    current_actor()
    query = Task.query
    for param, column in (('volunteer', Task.volunteer_id), ('donation', Task.donation_id)):
        value = request.args.get(param)
        if value is None:
            continue
        try:
            query = query.filter(column == int(value))
        except ValueError:
            raise ValidationError(f'{param} must be an id', field=param)
    status = request.args.get('status')
    if status:
        query = query.filter(Task.status == parse_choice(status, TASK_STATUSES, 'status'))

    tasks = query.order_by(Task.created_at.desc(), Task.id.desc()).all()
    return jsonify({'tasks': [t.to_dict() for t in tasks]}), 200


@tasks_bp.route('/api/tasks/<int:task_id>', methods=['PATCH'])
@jwt_required()
def update_task(task_id):
    actor = current_actor()
    task = task_workflow.apply_task_patch(actor, task_id, get_json_body(request))
    return jsonify(task.to_dict()), 200


@tasks_bp.route('/api/tasks/<int:task_id>/verify', methods=['POST'])
@jwt_required()
def verify_task(task_id):
    actor = current_actor()
    data = get_json_body(request)
    task = task_workflow.verify(actor, task_id, data.get('verification_status'))
    return jsonify(task.to_dict()), 200
