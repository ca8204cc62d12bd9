titles: list[str] = [
    "Prof",
    "Dr",
    "Mr",
    "Ms",
    "Mrs",
]

genders: list[str] = [
    "Male",
    "Female",
    "Other",
]

blood_groups: list[str] = [
    "A+",
    "A-",
    "B+",
    "B-",
    "AB+",
    "AB-",
    "O+",
    "O-",
]

departments: list[str] = [
    "Civil Engineering",
    "Computer Science & Engineering",
    "Electrical & Electronics Engineering",
    "Electronics & Communication Engineering",
    "Instrumentation & Control Engineering",
    "Mechanical Engineering",
    "Metallurgical and Materials Engineering",
    "Production Engineering",
    "Chemical Engineering",
    "Architecture",
    "Integrated Teacher Education Programme (ITEP)",
    "Physics",
    "Chemistry",
    "Mathematics",
    "Computer Science",
    "Computer Applications",
    "English",
    "Management Studies",
    "Other",
]

programmes: list[str] = [
    "B.Tech",
    "B.Arch",
    "M.Tech",
    "M.Sc",
    "MBA",
    "MCA",
    "Ph.D",
]

# Short code -> display name
branches: dict[str, str] = {
    "CSE": "Computer Science & Engineering",
    "ECE": "Electronics & Communication Engineering",
    "EEE": "Electrical & Electronics Engineering",
    "ME": "Mechanical Engineering",
    "CE": "Civil Engineering",
    "ICE": "Instrumentation & Control Engineering",
    "MME": "Metallurgical & Materials Engineering",
    "CHE": "Chemical Engineering",
    "PRO": "Production Engineering",
    "ARCH": "Architecture",
    "CA": "Computer Applications",
    "Maths": "Mathematics",
    "Phy": "Physics",
    "Chem": "Chemistry",
}

semesters: list[str] = [str(n) for n in range(1, 11)]

# Value -> display name
student_request_categories: dict[str, str] = {
    "New": "New ID Card",
    "Lost": "Lost",
    "Damaged": "Damaged",
    "Correction": "Data Correction",
}

staff_request_categories: dict[str, str] = {
    "New": "New ID Card",
    "Correction": "Correction",
    "Update": "Update",
    "Replacement": "Replacement",
}

staff_data_change_reasons: list[str] = [
    "Name",
    "Address",
    "Designation",
    "Email ID",
    "Date Of Birth",
    "Contact No",
    "Transfer / Promotion / Redesignation",
    "Other",
]

student_data_change_reasons: list[str] = [
    "Name",
    "Date Of Birth",
    "Programme / Branch",
    "Blood Group",
    "Address",
    "Other",
]
