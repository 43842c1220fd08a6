from typing import List

from fastapi import APIRouter, Depends, Response, status
from fastapi.responses import PlainTextResponse
from sqlalchemy.orm import Session

from .. import notifications, operators_store
from ..auth import Principal, get_current_operator, get_db, require_admin
from ..csv_export import operators_csv
from ..errors import NotFound
from ..models import Operator
from ..schemas import OperatorIn, OperatorOut, operator_out


router = APIRouter(prefix="/api/operators", tags=["operators"])


@router.get("/current", response_model=OperatorOut)
def get_current(operator: Operator = Depends(get_current_operator)):
    return operator_out(operator)


@router.put("/current", response_model=OperatorOut)
def update_current(
    body: OperatorIn,
    operator: Operator = Depends(get_current_operator),
    db: Session = Depends(get_db),
):
    operator.name = body.name
    operator.email = body.email
    operator.bug_reports_receiver = body.report_receiver
    return operator_out(operators_store.save(db, operator))


@router.get("/notification/confirm", status_code=status.HTTP_204_NO_CONTENT)
def confirm_notification(token: str = "", db: Session = Depends(get_db)):
    notifications.confirm_notification(db, token)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/csv", response_class=PlainTextResponse)
def export_operators(_: Principal = Depends(require_admin), db: Session = Depends(get_db)):
    return PlainTextResponse(
        operators_csv(operators_store.find_all(db)),
        media_type="text/csv; charset=utf-8",
        headers={"Content-Disposition": 'attachment; filename="operators.csv"'},
    )


@router.get("/", response_model=List[OperatorOut])
def list_operators(_: Principal = Depends(require_admin), db: Session = Depends(get_db)):
    return [operator_out(op) for op in operators_store.find_all(db)]


@router.delete("/{uuid}", status_code=status.HTTP_204_NO_CONTENT)
def delete_operator(uuid: str, _: Principal = Depends(require_admin), db: Session = Depends(get_db)):
    operator = operators_store.find_by_uuid(db, uuid)
    if operator is None:
        raise NotFound()
    operators_store.delete(db, operator)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
