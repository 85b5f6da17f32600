# Copyright 2025 ApeCloud, Inc.
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

from celery import Celery

from config.celery_beat_schedule import CELERY_BEAT_SCHEDULE
from replicator.config import settings

app = Celery(
    "replicator",
    broker=settings.celery_broker_url,
    backend=settings.celery_result_backend,
    include=["replicator.tasks.reconcile_tasks"],
)

app.conf.update(
    beat_schedule=CELERY_BEAT_SCHEDULE,
    timezone="UTC",
    task_acks_late=True,
    worker_prefetch_multiplier=1,
)
